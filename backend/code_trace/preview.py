import html

from code_trace.document import strip_styles

PLACEHOLDER = '<div class="preview-empty">Preview will appear here</div>'

# No allow-same-origin: with allow-scripts it would let the page reach back into the app.
SANDBOX = "allow-scripts allow-forms"


def render_preview(code: str, css_enabled: bool = True) -> str:
    """Isolated <iframe srcdoc> rendering of ``code``; styles dropped when CSS is toggled off."""
    if not code:
        return PLACEHOLDER
    if not css_enabled:
        code = strip_styles(code)
    return (
        f'<iframe class="preview-frame" title="Preview" sandbox="{SANDBOX}" '
        f'srcdoc="{html.escape(code, quote=True)}"></iframe>'
    )
