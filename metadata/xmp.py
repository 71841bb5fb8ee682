"""XMP packet access: rating/date read, rating merge and container embedding.

Packets live in a PNG ``iTXt`` chunk keyed ``XML:com.adobe.xmp``, a JPEG APP1
segment tagged with the Adobe XAP namespace, or a WebP ``XMP `` chunk.
"""
import dataclasses
import logging
import re
import xml.etree.ElementTree as ET
from typing import Optional

from core.errors import FormatError, UnsupportedVariantError
from formats import jpeg, png, webp
from formats.image_format import ImageFormat
from metadata.rating import rating_to_percent, resolve_rating

logger = logging.getLogger(__name__)

XMP_KEYWORD = "XML:com.adobe.xmp"

NS_X = "adobe:ns:meta/"
NS_RDF = "http://www.w3.org/1999/02/22-rdf-syntax-ns#"
NS_XMP = "http://ns.adobe.com/xap/1.0/"
NS_EXIF = "http://ns.adobe.com/exif/1.0/"

_DESCRIPTION = f"{{{NS_RDF}}}Description"
_RDF = f"{{{NS_RDF}}}RDF"
_ABOUT = f"{{{NS_RDF}}}about"

_BASE_PREFIXES = {"x": NS_X, "rdf": NS_RDF, "xmp": NS_XMP, "exif": NS_EXIF}

# Prefixes ElementTree uses when serializing; other namespaces come out as ns0, ns1, ...
_KNOWN_PREFIXES = dict(
    _BASE_PREFIXES,
    dc="http://purl.org/dc/elements/1.1/",
    tiff="http://ns.adobe.com/tiff/1.0/",
    photoshop="http://ns.adobe.com/photoshop/1.0/",
    xmpMM="http://ns.adobe.com/xap/1.0/mm/",
    stEvt="http://ns.adobe.com/xap/1.0/sType/ResourceEvent#",
    stRef="http://ns.adobe.com/xap/1.0/sType/ResourceRef#",
    xmpRights="http://ns.adobe.com/xap/1.0/rights/",
    aux="http://ns.adobe.com/exif/1.0/aux/",
    crs="http://ns.adobe.com/camera-raw-settings/1.0/",
    lr="http://ns.adobe.com/lightroom/1.0/",
    darktable="http://darktable.sf.net/",
)
for _prefix, _uri in _KNOWN_PREFIXES.items():
    ET.register_namespace(_prefix, _uri)

PACKET_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<x:xmpmeta xmlns:x="adobe:ns:meta/" x:xmptk="XMP Core 6.0.0">
 <rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#">
  <rdf:Description rdf:about=""
    xmlns:xmp="http://ns.adobe.com/xap/1.0/"
    xmp:Rating="{rating}"
    xmp:RatingPercent="{percent}"/>
 </rdf:RDF>
</x:xmpmeta>"""

# Processing instructions and comments ahead of the root element.
_PROLOG_RE = re.compile(r"\s*(?:<\?.*?\?>\s*|<!--.*?-->\s*)*", re.S)
_XPACKET_END_RE = re.compile(r"<\?xpacket\s+end=[^>]*\?>")


@dataclasses.dataclass
class XmpInfo:
    rating: Optional[int] = None
    rating_percent: Optional[int] = None
    date_time_original: Optional[str] = None
    create_date: Optional[str] = None
    modify_date: Optional[str] = None

    @property
    def resolved_rating(self) -> Optional[int]:
        return resolve_rating(self.rating, self.rating_percent)

    def has_values(self) -> bool:
        return any(v is not None for v in dataclasses.astuple(self))


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))
    except ValueError:
        logger.debug("Ignoring non-numeric XMP value %r", value)
        return None


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

def extract_packet(data, fmt: ImageFormat) -> Optional[str]:
    """Return the raw XMP packet text embedded in data, or None."""
    if fmt is ImageFormat.PNG:
        for _chunk, keyword, text in png.iter_text(png.parse(data)):
            if keyword == XMP_KEYWORD:
                return text
        return None

    if fmt is ImageFormat.JPEG:
        found = jpeg.find_app1(data, jpeg.XMP_IDENTIFIER)
        raw = found[1] if found else None
    else:
        raw = webp.find_chunk(data, webp.XMP)
    if raw is None:
        return None
    try:
        return raw.decode("utf-8").rstrip("\x00")
    except UnicodeDecodeError as e:
        logger.debug("XMP packet is not valid UTF-8: %s", e)
        return None


def _property(description: ET.Element, ns: str, name: str) -> Optional[str]:
    """Read a simple property written either as an attribute or a child element."""
    tag = f"{{{ns}}}{name}"
    value = description.get(tag)
    if value is None:
        child = description.find(tag)
        if child is not None:
            value = child.text
    if value is None or not value.strip():
        return None
    return value.strip()


def _first_property(root: ET.Element, ns: str, name: str) -> Optional[str]:
    for description in root.iter(_DESCRIPTION):
        value = _property(description, ns, name)
        if value is not None:
            return value
    return None


def _regex_property(packet: str, prefix: str, name: str) -> Optional[str]:
    m = re.search(r"""%s:%s\s*=\s*["']([^"']*)["']""" % (prefix, name), packet)
    if m is None:
        m = re.search(r"<%s:%s>([^<]*)</%s:%s>" % (prefix, name, prefix, name), packet)
    if m is None or not m.group(1).strip():
        return None
    return m.group(1).strip()


def parse_packet(packet: str) -> XmpInfo:
    """Read rating and date properties; falls back to regex on malformed XML."""
    try:
        root = ET.fromstring(packet.strip())
    except ET.ParseError as e:
        logger.debug("XMP packet is not well-formed, using regex fallback: %s", e)
        root = None

    if root is not None:
        def lookup(prefix, name):
            return _first_property(root, _BASE_PREFIXES[prefix], name)
    else:
        def lookup(prefix, name):
            return _regex_property(packet, prefix, name)

    return XmpInfo(
        rating=_to_int(lookup("xmp", "Rating")),
        rating_percent=_to_int(lookup("xmp", "RatingPercent")),
        date_time_original=lookup("exif", "DateTimeOriginal"),
        create_date=lookup("xmp", "CreateDate"),
        modify_date=lookup("xmp", "ModifyDate"),
    )


def read_xmp(data, fmt: ImageFormat) -> Optional[XmpInfo]:
    """XMP info for an image, or None when there is no usable packet."""
    try:
        packet = extract_packet(data, fmt)
    except FormatError as e:
        logger.debug("Cannot locate XMP packet: %s", e)
        return None
    if not packet:
        return None
    info = parse_packet(packet)
    return info if info.has_values() else None


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------

def build_packet(rating: int) -> str:
    return PACKET_TEMPLATE.format(rating=rating, percent=rating_to_percent(rating))


def _merge_tree(packet: str, rating: int, percent: int) -> Optional[str]:
    root = ET.fromstring(packet.strip())
    rdf = root if root.tag == _RDF else root.find(f".//{_RDF}")
    if rdf is None:
        return None
    descriptions = list(rdf.iter(_DESCRIPTION))
    if not descriptions:
        descriptions = [ET.SubElement(rdf, _DESCRIPTION, {_ABOUT: ""})]

    values = {f"{{{NS_XMP}}}Rating": rating, f"{{{NS_XMP}}}RatingPercent": percent}
    for description in descriptions:
        for tag in values:
            description.attrib.pop(tag, None)
            for child in description.findall(tag):
                description.remove(child)
    for tag, value in values.items():
        descriptions[0].set(tag, str(value))

    body = ET.tostring(root, encoding="unicode")
    prolog = _PROLOG_RE.match(packet).group(0).strip()
    end = _XPACKET_END_RE.search(packet)
    parts = [prolog, body, end.group(0) if end else ""]
    return "\n".join(p for p in parts if p)


def _merge_regex(packet: str, rating: int, percent: int) -> Optional[str]:
    updated = packet
    for name, value in (("Rating", rating), ("RatingPercent", percent)):
        attr_re = re.compile(r"""(xmp:%s\s*=\s*)(["'])[^"']*\2""" % name)
        elem_re = re.compile(r"(<xmp:%s>)[^<]*(</xmp:%s>)" % (name, name))
        if attr_re.search(updated):
            updated = attr_re.sub(lambda m: f"{m.group(1)}{m.group(2)}{value}{m.group(2)}", updated, count=1)
        elif elem_re.search(updated):
            updated = elem_re.sub(lambda m: f"{m.group(1)}{value}{m.group(2)}", updated, count=1)
        else:
            m = re.search(r"<rdf:Description\b", updated)
            if m is None:
                return None
            updated = f'{updated[:m.end()]} xmp:{name}="{value}"{updated[m.end():]}'
    if "xmlns:xmp=" not in updated:
        m = re.search(r"<rdf:Description\b", updated)
        if m is None:
            return None
        updated = f'{updated[:m.end()]} xmlns:xmp="{NS_XMP}"{updated[m.end():]}'
    return updated


def merge_rating(packet: Optional[str], rating: int) -> str:
    """Return packet with xmp:Rating/xmp:RatingPercent set to rating.

    Other properties are kept as far as ElementTree round-trips them. A packet
    that cannot be parsed is patched textually, and replaced by a minimal
    packet when even that fails.
    """
    percent = rating_to_percent(rating)
    if not packet or not packet.strip():
        return build_packet(rating)
    try:
        merged = _merge_tree(packet, rating, percent)
    except ET.ParseError as e:
        logger.debug("Merging XMP textually, packet is not well-formed: %s", e)
        merged = _merge_regex(packet, rating, percent)
    if merged is None:
        logger.debug("Existing XMP packet has no rdf:Description, writing a new one")
        merged = build_packet(rating)
    return merged


def embed_packet(data, fmt: ImageFormat, packet: str) -> bytes:
    """Store packet in the container, replacing an existing XMP block in place.

    PNG: new iTXt chunks go before IEND. JPEG: a new APP1 goes right after SOI.
    """
    if fmt is ImageFormat.JPEG:
        return jpeg.upsert_app1(data, jpeg.XMP_IDENTIFIER, packet.encode("utf-8"))
    if fmt is not ImageFormat.PNG:
        raise UnsupportedVariantError(f"Writing XMP is not supported for {fmt.value}")
    layout = png.parse(data)
    layout.upsert(png.build_itxt(XMP_KEYWORD, packet),
                  lambda chunk: png.text_keyword(chunk) == XMP_KEYWORD,
                  match_types=png.TEXT_CHUNK_TYPES)
    return layout.to_bytes()


def write_xmp_rating(data, fmt: ImageFormat, rating: int) -> bytes:
    """Return new file bytes with the XMP rating merged in."""
    return embed_packet(data, fmt, merge_rating(extract_packet(data, fmt), rating))
