"""
Unit tests for device classification
"""

import pytest

from scanner.classifier import (
    build_rules,
    classify,
    classify_device,
    detect_pinna,
    detect_rig,
    headphone_score,
    is_headphone,
    is_tws,
)


class TestHeadphoneScore:
    """Additive over-ear score"""

    def test_registry_model_is_headphone(self):
        score, fired = headphone_score("Sennheiser HD600", "listener")
        assert score == 100
        assert fired == ["oe_model"]

    def test_explicit_tag(self):
        assert is_headphone("Generic Model (OE)", "listener")

    def test_ie_brand_dominates(self):
        score, fired = headphone_score("KZ ZS10", "crinacleHP")
        assert score == -200 + 30
        assert fired == ["ie_brand", "oe_domain_hint"]
        assert not is_headphone("KZ ZS10", "crinacleHP")

    def test_each_rule_counts_once(self):
        """Two registry models in one name still add 100 only once"""
        score, _ = headphone_score("HD600 vs HD650 (OE) (HP)", "listener")
        assert score == 200

    def test_ie_domain_penalty(self):
        """An in-ear-only site pulls an otherwise over-ear name below zero"""
        assert headphone_score("Sennheiser HD600", "hbb")[0] == 100 - 150
        assert not is_headphone("Sennheiser HD600", "hbb")

    def test_domain_hint_alone_is_enough(self):
        assert headphone_score("Acme Studio", "crinacleHP") == (30, ["oe_domain_hint"])
        assert headphone_score("Acme Studio", "listener5128")[0] == 30

    def test_weights_are_tunable(self):
        rules = build_rules({"ie_domain": 0})
        assert is_headphone("Sennheiser HD600", "hbb", rules)


class TestTWS:
    """True-wireless detection"""

    @pytest.mark.parametrize("name", ["Apple AirPods Pro", "Sony WF-1000XM4 TWS", "Galaxy Buds2", "Some earbud"])
    def test_tws_names(self, name):
        assert is_tws(name)

    def test_wired_name(self):
        assert not is_tws("Moondrop Blessing 3")

    def test_classify_device_excludes_tws(self):
        assert classify_device("Apple", "AirPods Pro", "listener") is None


class TestPinnaAndRig:
    """Pinna and rig detection"""

    def test_5128_marker_first(self):
        assert detect_pinna("HD600", "listener5128") == "5128"
        assert detect_pinna("HD600 (5128)", "sai") == "5128"

    def test_domain_override(self):
        assert detect_pinna("HD600 KB006x", "sai") == "kb5"
        assert detect_pinna("HD600", "crinacleHP") == "kb5"

    def test_model_number_keywords(self):
        assert detect_pinna("HD600 (KB0065)", "listener") == "kb0065"
        assert detect_pinna("HD600 (KB5010)", "listener") == "kb5"

    def test_default_kb5(self):
        assert detect_pinna("HD600", "listener") == "kb5"

    def test_rig(self):
        assert detect_rig("earphonesarchive", "x", "x") == "5128"
        assert detect_rig("listener5128", "x", "x") == "5128"
        assert detect_rig("listener", "Blessing 3 (5128)", "Moondrop Blessing 3") == "5128"
        assert detect_rig("listener", "Blessing 3", "Moondrop Blessing 3") == "711"


class TestClassify:
    """Full classification"""

    def test_in_ear_has_no_pinna(self):
        c = classify("Moondrop Aria", "listener")
        assert c.type == "iem"
        assert c.pinna is None

    def test_in_ear_on_5128_domain(self):
        """A 5128 domain hint does not outweigh an in-ear brand and tag"""
        c = classify("Moondrop Aria (IEM)", "listener5128")
        assert c.type == "iem"
        assert c.pinna is None

    def test_headphone_pinna(self):
        c = classify("Sennheiser HD600", "listener")
        assert (c.type, c.pinna) == ("headphone", "kb5")

    def test_headphone_on_5128_rig_gets_5128_pinna(self):
        c, rig = classify_device("Sennheiser", "HD600", "earphonesarchiveHP", "HD600")
        assert rig == "5128"
        assert c.type == "headphone"
        assert c.pinna == "5128"
        assert c.display_name == "Sennheiser HD600"
