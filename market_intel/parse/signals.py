"""Rule-based extraction of style, subject, medium and size from listing text."""
import logging
import re
from typing import Optional

from market_intel.errors import ParseError
from market_intel.models import ParsedSignal, RawListing

logger = logging.getLogger(__name__)

# Controlled vocabularies. Order matters: the first matching term wins.
STYLE_PATTERNS: dict[str, re.Pattern] = {
    "abstract": re.compile(r"\b(abstract|abstraction|non-?representational)\b", re.I),
    "impressionist": re.compile(r"\b(impressionist|impressionism|impressionistic)\b", re.I),
    "expressionist": re.compile(r"\b(expressionist|expressionism)\b", re.I),
    "minimalist": re.compile(r"\b(minimalist|minimalism)\b", re.I),
    "pop art": re.compile(r"\b(pop art|pop-art|popart)\b", re.I),
    "photorealism": re.compile(r"\b(photo-?realism|photorealistic|hyper-?realism)\b", re.I),
    "realism": re.compile(r"\b(realism|realistic|realist)\b", re.I),
    "surrealist": re.compile(r"\b(surreal|surrealism|surrealist)\b", re.I),
    "folk art": re.compile(r"\b(folk art|folk-art|folkart|naive art)\b", re.I),
    "impasto": re.compile(r"\b(impasto|palette knife|palette-knife|knife painting)\b", re.I),
    "cubist": re.compile(r"\b(cubist|cubism)\b", re.I),
    "art deco": re.compile(r"\b(art deco|art-deco|artdeco)\b", re.I),
    "street art": re.compile(r"\b(street art|graffiti|urban art)\b", re.I),
    "vintage": re.compile(r"\b(vintage|retro|antique|mid-?century)\b", re.I),
    "contemporary": re.compile(r"\b(contemporary|modern|modernist)\b", re.I),
}

SUBJECT_PATTERNS: dict[str, re.Pattern] = {
    "still life": re.compile(r"\b(still life|still-life|vase|fruit bowl)\b", re.I),
    "seascape": re.compile(r"\b(seascape|ocean|sea|beach|coastal|waves|nautical)\b", re.I),
    "cityscape": re.compile(r"\b(cityscape|skyline|street scene|city)\b", re.I),
    "landscape": re.compile(r"\b(landscape|scenery|countryside|mountains?|valley|meadow)\b", re.I),
    "portrait": re.compile(r"\b(portrait|portraiture|face)\b", re.I),
    "figurative": re.compile(r"\b(figurative|figure|nude)\b", re.I),
    "animal": re.compile(r"\b(animals?|wildlife|dogs?|cats?|horses?|birds?)\b", re.I),
    "floral": re.compile(r"\b(floral|flowers?|botanical|roses?|tulips?|peony|peonies)\b", re.I),
    "nature": re.compile(r"\b(nature|trees?|forest|garden)\b", re.I),
}

MEDIUM_PATTERNS: dict[str, re.Pattern] = {
    "oil": re.compile(r"\b(oil paint(ing)?|oil on|oils on|oil painting)\b", re.I),
    "acrylic": re.compile(r"\b(acrylics?)\b", re.I),
    "watercolor": re.compile(r"\b(watercolou?rs?|aquarelle)\b", re.I),
    "mixed media": re.compile(r"\b(mixed media|mixed-media|multimedia)\b", re.I),
    "pastel": re.compile(r"\b(pastels?)\b", re.I),
    "gouache": re.compile(r"\b(gouache)\b", re.I),
    "encaustic": re.compile(r"\b(encaustic)\b", re.I),
    "ink": re.compile(r"\b(ink|india ink|sumi-e)\b", re.I),
    "charcoal": re.compile(r"\b(charcoal)\b", re.I),
    "graphite": re.compile(r"\b(graphite|pencil drawing)\b", re.I),
    "spray paint": re.compile(r"\b(spray paint|spraypaint|aerosol)\b", re.I),
}

_NUMBER = r"\d{1,3}(?:\.\d+)?"
_INCH_UNIT = r"(?:\"|”|″|''|inch(?:es)?\b\.?|in\b\.?)"
_CM_UNIT = r"(?:cm\b)"
_DIMENSION = r"(?<![\d.])(?P<w>{num})\s*(?P<u1>{unit})?\s*[x×X]\s*(?P<h>{num})(?![\d.])\s*(?P<u2>{unit})?"

INCH_DIMENSIONS = re.compile(_DIMENSION.format(num=_NUMBER, unit=_INCH_UNIT), re.I)
CM_DIMENSIONS = re.compile(_DIMENSION.format(num=_NUMBER, unit=_CM_UNIT), re.I)

CM_PER_INCH = 2.54
MIN_SIDE_IN = 1.0
MAX_SIDE_IN = 120.0


def _match_vocabulary(text: str, patterns: dict[str, re.Pattern]) -> Optional[str]:
    for term, pattern in patterns.items():
        if pattern.search(text):
            return term
    return None


def _scan_dimensions(text: str, pattern: re.Pattern, factor: float) -> Optional[tuple[float, float]]:
    for match in pattern.finditer(text):
        # A bare "24x36" carries no unit and is never taken as a size
        if not (match.group("u1") or match.group("u2")):
            continue
        width = round(float(match.group("w")) / factor, 2)
        height = round(float(match.group("h")) / factor, 2)
        if MIN_SIDE_IN <= width <= MAX_SIDE_IN and MIN_SIDE_IN <= height <= MAX_SIDE_IN:
            return width, height
    return None


def extract_dimensions(text: str) -> tuple[Optional[float], Optional[float]]:
    """Return (width, height) in inches from the first unit-marked pair, else (None, None)."""
    if not text:
        return None, None
    found = _scan_dimensions(text, INCH_DIMENSIONS, 1.0)
    if found is None:
        found = _scan_dimensions(text, CM_DIMENSIONS, CM_PER_INCH)
    if found is None:
        return None, None
    return found


def orientation_for(width: Optional[float], height: Optional[float]) -> Optional[str]:
    if width is None or height is None:
        return None
    if width == height:
        return "square"
    return "portrait" if height > width else "landscape"


def parse_listing(listing: RawListing) -> ParsedSignal:
    """Extract a structured signal from one raw listing.

    Pure function: no network or storage access. Raises ``ParseError`` when
    the listing has no usable title.
    """
    title = (listing.title or "").strip()
    if not title:
        raise ParseError(f"Listing {listing.item_id} has no title")

    text = " ".join(part for part in (title, listing.description or "") if part)
    width, height = extract_dimensions(text)

    return ParsedSignal(
        listing_id=listing.id,
        style=_match_vocabulary(text, STYLE_PATTERNS),
        subject=_match_vocabulary(text, SUBJECT_PATTERNS),
        medium=_match_vocabulary(text, MEDIUM_PATTERNS),
        width_in=width,
        height_in=height,
        orientation=orientation_for(width, height),
    )
