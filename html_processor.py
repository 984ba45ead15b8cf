# Module for HTML parsing, image discovery, and offline rewriting

import html
import logging
import os
import re

# Set up a specific logger for this module
logger = logging.getLogger(__name__)
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
import constants # Import constants
from models import ImageRef


_HTTP_SCHEME_RE = re.compile(r'^https?://', re.IGNORECASE)
_DIMENSION_RE = re.compile(r'^\s*(\d+)')
_YOUTUBE_ID_PATTERNS = [
    re.compile(r'youtube\.com/watch\?(?:.*&)?v=([\w-]+)'),
    re.compile(r'youtu\.be/([\w-]+)'),
    re.compile(r'youtube\.com/embed/([\w-]+)'),
    re.compile(r'youtube-nocookie\.com/embed/([\w-]+)'),
    re.compile(r'youtube\.com/v/([\w-]+)'),
]


# --- URL Normalization ---
def is_data_uri(src):
    return src[:5].lower() == 'data:'


def normalize_image_url(src, base_url=None):
    """
    Resolves a possibly relative image URL against the entry's base URL.
    Data URIs and anything that cannot be resolved are returned unchanged.
    """
    if not src:
        return src
    src = src.strip()
    if is_data_uri(src):
        return src
    try:
        # Protocol-relative URL
        if src.startswith('//'):
            return 'https:' + src
        # Root-relative URL, resolved against the base authority
        if src.startswith('/') and base_url:
            return urljoin(base_url, src)
        if not _HTTP_SCHEME_RE.match(src) and base_url:
            return urljoin(base_url, src)
    except ValueError as e:
        logger.debug(f"Could not normalize image URL {src!r} against {base_url!r}: {e}")
    return src


def get_image_extension(url):
    """Infers an image file extension from the URL path, defaulting to jpg."""
    try:
        path = urlparse(url).path
    except ValueError:
        return constants.DEFAULT_IMAGE_EXTENSION
    ext = os.path.splitext(path)[1].lstrip('.').lower()
    if ext in constants.VALID_IMAGE_EXTENSIONS:
        return ext
    return constants.DEFAULT_IMAGE_EXTENSION


def _parse_dimension(value):
    if value is None:
        return None
    match = _DIMENSION_RE.match(str(value))
    return int(match.group(1)) if match else None


def _parse_srcset_2x(srcset, base_url):
    """Returns the normalized 2x candidate of a srcset attribute, if any."""
    for candidate in srcset.split(','):
        parts = candidate.split()
        if len(parts) == 2 and parts[1] == '2x':
            return normalize_image_url(parts[0], base_url)
    return None


# --- YouTube Embeds ---
def extract_youtube_id(url):
    if not url:
        return None
    for pattern in _YOUTUBE_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def replace_youtube_iframes(html_content):
    """
    Replaces YouTube iframes with a thumbnail image linking to the video, so the
    embed survives as a plain downloadable image. Other iframes are left for the
    rewriter to strip.
    """
    if not html_content or 'iframe' not in html_content.lower():
        return html_content
    try:
        soup = BeautifulSoup(html_content, 'html.parser')
        replaced = 0
        for iframe in soup.find_all('iframe'):
            video_id = extract_youtube_id(iframe.get('src'))
            if not video_id:
                continue
            link = soup.new_tag('a', href=constants.YOUTUBE_WATCH_URL.format(video_id=video_id))
            link.append(soup.new_tag('img', src=constants.YOUTUBE_THUMBNAIL_URL.format(video_id=video_id),
                                     alt='YouTube video thumbnail'))
            iframe.replace_with(link)
            replaced += 1
        if not replaced:
            return html_content
        logger.debug(f"Replaced {replaced} YouTube iframe(s) with thumbnails")
        return str(soup)
    except Exception as e:
        logger.error(f"Error replacing YouTube iframes: {e}", exc_info=True)
        return html_content


# --- Image Discovery ---
def find_images(html_content, base_url=None):
    """
    Scans entry HTML for <img> sources, deduplicated by normalized URL.

    Returns:
        tuple: (list of ImageRef in first-seen order, dict of normalized URL -> ImageRef).
        Both are empty if the markup cannot be scanned.
    """
    images = []
    lookup = {}
    if not html_content:
        return images, lookup

    try:
        soup = BeautifulSoup(html_content, 'html.parser')
        for img_tag in soup.find_all('img'):
            src = img_tag.get('src')
            if not src or not src.strip() or is_data_uri(src.strip()):
                continue

            normalized = normalize_image_url(src, base_url)
            if normalized in lookup:
                continue

            filename = constants.IMAGE_FILENAME_TEMPLATE.format(
                index=len(images) + 1, ext=get_image_extension(normalized))
            srcset = img_tag.get('srcset')
            image = ImageRef(
                src=normalized,
                filename=filename,
                width=_parse_dimension(img_tag.get('width')),
                height=_parse_dimension(img_tag.get('height')),
                src2x=_parse_srcset_2x(srcset, base_url) if srcset else None,
            )
            images.append(image)
            lookup[normalized] = image
    except Exception as e:
        logger.error(f"Error parsing HTML to find images: {e}", exc_info=True)
        return [], {}

    logger.debug(f"Discovered {len(images)} unique image(s)")
    return images, lookup


# --- Rewriting ---
def rewrite_entry_html(html_content, image_lookup, include_images, base_url=None):
    """
    Produces offline HTML: downloaded images point at their local filename,
    every other <img> is removed, and network-active elements are stripped.
    Falls back to the original content if the markup cannot be processed.
    """
    if not html_content:
        return html_content

    try:
        soup = BeautifulSoup(html_content, 'html.parser')

        for tag_name in constants.STRIPPED_TAGS:
            for tag in soup.find_all(tag_name):
                tag.decompose()
        # <picture> sources only carry remote srcsets
        for source in soup.select('picture source'):
            source.decompose()

        kept = removed = 0
        for img_tag in soup.find_all('img'):
            src = (img_tag.get('src') or '').strip()
            if include_images and src and is_data_uri(src):
                kept += 1
                continue

            image = image_lookup.get(normalize_image_url(src, base_url)) if include_images and src else None
            if image is None or not image.downloaded:
                img_tag.decompose()
                removed += 1
                continue

            attrs = {'src': image.filename}
            if img_tag.get('alt'):
                attrs['alt'] = img_tag['alt']
            if image.width:
                attrs['width'] = str(image.width)
            if image.height:
                attrs['height'] = str(image.height)
            img_tag.attrs = attrs
            kept += 1

        logger.debug(f"Rewrote images: kept={kept}, removed={removed}")
        return str(soup)

    except Exception as e:
        logger.error(f"Error rewriting entry HTML, keeping original content: {e}", exc_info=True)
        return html_content


def build_entry_document(entry, content):
    """Wraps processed entry content in a complete HTML document with a header block."""
    escaped_title = html.escape(entry.title or constants.UNTITLED_ENTRY)

    meta_lines = []
    if entry.feed_title:
        meta_lines.append(f"<p><strong>Feed:</strong> {html.escape(entry.feed_title)}</p>")
    if entry.published_at:
        meta_lines.append(f"<p><strong>Published:</strong> {html.escape(entry.published_at)}</p>")
    if entry.url:
        parsed = urlparse(entry.url)
        origin = f"{parsed.scheme}://{parsed.netloc}" if parsed.scheme and parsed.netloc else entry.url
        meta_lines.append(
            f'<p><strong>URL:</strong> <a href="{html.escape(entry.url, quote=True)}">{html.escape(origin)}</a></p>')
    meta_html = ''.join(f"\n        {line}" for line in meta_lines)

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{escaped_title}</title>
</head>
<body>
    <div class="entry-meta">
        <h1>{escaped_title}</h1>{meta_html}
    </div>
    <div class="entry-content">
        {content}
    </div>
</body>
</html>
"""
