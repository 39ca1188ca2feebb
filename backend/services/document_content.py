"""
Structured intermediate between the per-type renderers and the raw PDF writer.
"""
import html
from dataclasses import dataclass, field
from typing import List


def escape_markup(value: str) -> str:
    # Single quotes as &#39; so the content extractor's entity table covers them
    return html.escape(value or "", quote=True).replace("&#x27;", "&#39;")


@dataclass
class DocumentContent:
    title: str
    subtitle: str = ""
    sections: List[str] = field(default_factory=list)

    def to_markup(self) -> str:
        """Render as the semi-structured HTML consumed by the content extractor."""
        parts = [
            "<!DOCTYPE html>",
            '<html lang="fr">',
            '<head><meta charset="UTF-8"><title>' + escape_markup(self.title) + "</title></head>",
            "<body>",
            '<div class="header">',
            f"<h1>{escape_markup(self.title)}</h1>",
        ]
        if self.subtitle:
            parts.append(f"<h2>{escape_markup(self.subtitle)}</h2>")
        parts.append("</div>")
        for section in self.sections:
            parts.append(f'<div class="section"><p>{escape_markup(section)}</p></div>')
        parts.append("</body>")
        parts.append("</html>")
        return "\n".join(parts)
