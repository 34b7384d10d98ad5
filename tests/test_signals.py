"""Tests for listing signal extraction."""
import pytest

from market_intel.errors import ParseError
from market_intel.models import RawListing
from market_intel.parse.signals import extract_dimensions, orientation_for, parse_listing


def _listing(title, description=None):
    return RawListing(item_id="1", title=title, description=description, user_id="u1", search_keyword="art")


def test_inch_dimensions_with_unit_word():
    """Test '24x36 in' yields width 24 and height 36."""
    assert extract_dimensions("Large canvas 24x36 in ready to hang") == (24.0, 36.0)


def test_inch_dimensions_with_quote_marks():
    """Test dimensions marked with inch quotes."""
    assert extract_dimensions('Seascape 16" x 20" acrylic') == (16.0, 20.0)


def test_inch_dimensions_plural_word():
    """Test 'inches' unit marker."""
    assert extract_dimensions("Portrait 11 x 14 inches") == (11.0, 14.0)


def test_centimetre_dimensions_converted():
    """Test cm dimensions are converted to inches."""
    assert extract_dimensions("Abstract 30 x 40 cm") == (11.81, 15.75)


def test_bare_pair_is_not_a_size():
    """Test a pair without a unit marker is never taken as dimensions."""
    assert extract_dimensions("Original painting 24x36") == (None, None)


def test_no_dimensions():
    """Test text without any size."""
    assert extract_dimensions("Beautiful floral still life") == (None, None)
    assert extract_dimensions("") == (None, None)


def test_out_of_range_dimensions_ignored():
    """Test implausible sizes are rejected."""
    assert extract_dimensions("Lot 500 x 600 in") == (None, None)


def test_orientation():
    """Test orientation from width and height."""
    assert orientation_for(24, 36) == "portrait"
    assert orientation_for(36, 24) == "landscape"
    assert orientation_for(12, 12) == "square"
    assert orientation_for(None, 12) is None


def test_parse_listing_vocabularies():
    """Test style, subject and medium are matched from the title."""
    signal = parse_listing(_listing("Modern Seascape Watercolor Painting 9x12 in"))
    assert signal.style == "contemporary"
    assert signal.subject == "seascape"
    assert signal.medium == "watercolor"
    assert (signal.width_in, signal.height_in) == (9.0, 12.0)
    assert signal.orientation == "portrait"


def test_parse_listing_unmatched_fields_are_null():
    """Test unmatched text yields null fields, not guesses."""
    signal = parse_listing(_listing("Signed original by local artist"))
    assert signal.style is None
    assert signal.subject is None
    assert signal.medium is None
    assert signal.width_in is None
    assert signal.height_in is None
    assert signal.orientation is None


def test_parse_listing_uses_description():
    """Test the description contributes to extraction."""
    signal = parse_listing(_listing("Abstract painting", description="Oil on canvas, 20 x 20 in"))
    assert signal.style == "abstract"
    assert signal.medium == "oil"
    assert signal.orientation == "square"


def test_first_vocabulary_term_wins():
    """Test vocabulary order decides between multiple matches."""
    signal = parse_listing(_listing("Abstract modern acrylic"))
    assert signal.style == "abstract"


def test_parse_listing_requires_title():
    """Test a missing title is a parse error."""
    with pytest.raises(ParseError):
        parse_listing(_listing("   "))
