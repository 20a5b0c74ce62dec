from subco_agent.core.state import VersionState
from subco_agent.versioning import DETECTING


def test_view_is_a_copy():
    s = VersionState(current="1.0.0", known_image_versions=["a", "b"])
    v = s.view()
    s.replace_known_images(["c"])
    s.set_current("2.0.0")
    assert v.current == "1.0.0"
    assert v.known_image_versions == ("a", "b")
    assert s.known_image_versions == ["c"]


def test_known_images_property_returns_copy():
    s = VersionState(current="1.0.0", known_image_versions=["a"])
    images = s.known_image_versions
    images.append("x")
    assert s.known_image_versions == ["a"]


def test_default_image_is_detecting():
    assert VersionState(current="1.0.0").current_image_version == DETECTING


def test_detected_image_applies_while_detecting():
    s = VersionState(current="1.0.0")
    assert s.set_detected_image("registry/subco:v3") is True
    assert s.current_image_version == "registry/subco:v3"


def test_detected_image_does_not_overwrite_announced_image():
    s = VersionState(current="1.0.0")
    s.set_current_image("fleet-subco:v2")
    assert s.set_detected_image("registry/subco:v1") is False
    assert s.current_image_version == "fleet-subco:v2"


def test_locked_is_reentrant():
    s = VersionState(current="1.0.0")
    with s.locked() as held:
        held.set_current("1.0.1")
        assert held.current == "1.0.1"
        assert s.view().current == "1.0.1"
