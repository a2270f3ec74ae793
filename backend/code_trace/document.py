"""Splitting a generated page into its HTML and CSS halves, and putting them back."""

import re

STYLE_BLOCK_RE = re.compile(r"<style[^>]*>([\s\S]*?)</style>", re.IGNORECASE)


def extract_style(code: str) -> str:
    """Contents of the first <style> block, trimmed. Empty string if there is none."""
    match = STYLE_BLOCK_RE.search(code)
    return match.group(1).strip() if match else ""


def strip_styles(code: str) -> str:
    return STYLE_BLOCK_RE.sub("", code)


def combine_code(html: str, css: str) -> str:
    """
    Re-attach ``css`` to ``html`` for rendering.

    The stylesheet goes just before </head>, else right after <head>; a bare
    fragment is wrapped in a minimal document. No html means nothing to show.
    """
    if not html:
        return ""
    if not css:
        return html

    style = f"<style>{css}</style>"
    if "</head>" in html:
        return html.replace("</head>", f"{style}</head>", 1)
    if "<head>" in html:
        return html.replace("<head>", f"<head>{style}", 1)
    return f"<!DOCTYPE html><html><head>{style}</head><body>{html}</body></html>"
