from context_compress.presentation.report import render_report

__all__ = [
    "render_report",
]
