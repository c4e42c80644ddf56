from __future__ import annotations

import re
from dataclasses import dataclass

from bs4 import BeautifulSoup

# Tags dropped before conversion: scripts, chrome and media.
IGNORED_TAGS = (
    "script",
    "style",
    "iframe",
    "noscript",
    "form",
    "button",
    "input",
    "nav",
    "footer",
    "header",
    "aside",
    "svg",
    "img",
    "video",
    "audio",
    "canvas",
    "select",
    "textarea",
    "meta",
    "link",
)

HEADING_LEVELS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}
BLOCK_TAGS = ("p", "pre", "blockquote", "td", "th", "dt", "dd", "figcaption")


@dataclass
class ExtractedContent:
    url: str
    title: str
    text: str
    method: str
    raw_length: int
    extracted_length: int


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _strip_ignored(soup: BeautifulSoup) -> None:
    for tag in soup.find_all(IGNORED_TAGS):
        tag.decompose()
    for tag in soup.find_all(class_=re.compile(r"\badvert", re.IGNORECASE)):
        tag.decompose()


def _to_markdown(soup: BeautifulSoup) -> str:
    root = soup.body or soup
    lines: list[str] = []
    for element in root.find_all(list(HEADING_LEVELS) + ["li", *BLOCK_TAGS]):
        # nested blocks are emitted by their innermost block ancestor
        if element.find_parent(["li", *BLOCK_TAGS]) is not None and element.name not in HEADING_LEVELS:
            continue
        text = " ".join(element.get_text(" ", strip=True).split())
        if not text:
            continue
        if element.name in HEADING_LEVELS:
            lines.append(f"{'#' * HEADING_LEVELS[element.name]} {text}")
        elif element.name == "li":
            lines.append(f"* {text}")
        else:
            lines.append(text)
    if not lines:
        return _normalize_text(root.get_text("\n"))
    return _normalize_text("\n\n".join(lines))


def _extract_with_trafilatura(raw_html: str) -> str:
    import trafilatura

    extracted = trafilatura.extract(raw_html, output_format="markdown", include_images=False)
    if not isinstance(extracted, str):
        return ""
    return _normalize_text(extracted)


def html_to_markdown(url: str, raw_html: str) -> ExtractedContent:
    """Convert a fetched HTML page to markdown-ish plain text.

    Trafilatura's main-content extraction is tried first; when it finds nothing
    the page is stripped of ignored tags and flattened with BeautifulSoup.
    """
    soup = BeautifulSoup(raw_html, "html.parser")
    title = ""
    if soup.title and soup.title.string:
        title = _normalize_text(soup.title.string)

    try:
        primary = _extract_with_trafilatura(raw_html)
    except Exception:
        primary = ""
    if primary:
        return ExtractedContent(
            url=url,
            title=title,
            text=primary,
            method="trafilatura",
            raw_length=len(raw_html),
            extracted_length=len(primary),
        )

    _strip_ignored(soup)
    text = _to_markdown(soup)
    return ExtractedContent(
        url=url,
        title=title,
        text=text,
        method="soup",
        raw_length=len(raw_html),
        extracted_length=len(text),
    )
