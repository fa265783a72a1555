"""Tests for smackdown.sms - phone matching and TwiML replies."""

import xml.etree.ElementTree as ET

import pytest

from smackdown.sms import phone_digits, phone_key, twiml_response


class TestPhoneKey:
    @pytest.mark.parametrize(
        "phone",
        ["+1 (555) 010-0123", "5550100123", "+15550100123", "1-555-010-0123", "555.010.0123"],
    )
    def test_formats_collapse(self, phone):
        assert phone_key(phone) == "5550100123"

    def test_digits_only(self):
        assert phone_digits("+1 (555) 010-0123") == "15550100123"

    def test_empty(self):
        assert phone_key(None) == ""
        assert phone_key("") == ""

    def test_short_numbers_kept_whole(self):
        assert phone_key("12345") == "12345"


class TestTwiml:
    def test_single_message(self):
        doc = twiml_response("Score recorded!")
        root = ET.fromstring(doc)
        assert root.tag == "Response"
        assert root.find("Message").text == "Score recorded!"

    def test_escapes_markup(self):
        doc = twiml_response("Tom & Jerry <3 \"quotes\" don't")
        assert "&amp;" in doc
        assert "&lt;3" in doc
        assert "&quot;" in doc
        assert "&apos;" in doc
        assert ET.fromstring(doc).find("Message").text == "Tom & Jerry <3 \"quotes\" don't"
