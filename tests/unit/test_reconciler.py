import json

import pytest

from subco_agent.core.reconciler import (
    MalformedNotification,
    UpdateNotification,
    VersionReconciler,
    parse_update_notification,
)
from subco_agent.core.state import VersionState
from subco_agent.versioning import DETECTING


@pytest.fixture
def reconciler(state, transport, topics):
    return VersionReconciler(state, transport, topics, image_family="subco")


def _msg(obj) -> bytes:
    return json.dumps(obj).encode("utf-8")


# -------------------------
# parse_update_notification
# -------------------------
def test_parse_both_fields():
    n = parse_update_notification(_msg({"versions": {"subcoVersion": "2.0.0"}, "imageVersions": ["a", "b"]}))
    assert n == UpdateNotification(subco_version="2.0.0", image_versions=("a", "b"))


def test_parse_fields_are_independent():
    assert parse_update_notification("{}") == UpdateNotification(None, None)
    assert parse_update_notification('{"imageVersions": []}') == UpdateNotification(None, ())
    assert parse_update_notification('{"versions": {}}') == UpdateNotification(None, None)


@pytest.mark.parametrize(
    "payload",
    [
        b"not json",
        b"\xff\xfe",
        b"[1, 2]",
        b'"1.2.3"',
        b'{"versions": "5.0.0"}',
        b'{"versions": {"subcoVersion": 5}}',
        b'{"imageVersions": "a"}',
        b'{"imageVersions": ["a", 1]}',
    ],
)
def test_parse_rejects_malformed(payload):
    with pytest.raises(MalformedNotification):
        parse_update_notification(payload)


# -------------------------
# newUpdate
# -------------------------
def test_explicit_override_wins(reconciler, state, transport, topics):
    reconciler.on_update_notification(_msg({"versions": {"subcoVersion": "5.0.0"}}))
    assert state.current == "5.0.0"
    assert transport.on(topics.version()) == ["5.0.0"]


def test_override_is_verbatim_even_for_non_semver(reconciler, state):
    reconciler.on_update_notification(_msg({"versions": {"subcoVersion": "release-2024-q3"}}))
    assert state.current == "release-2024-q3"


def test_missing_version_increments(reconciler, state, transport, topics):
    reconciler.on_update_notification(b"{}")
    assert state.current == "1.0.1"
    assert transport.on(topics.version()) == ["1.0.1"]


def test_empty_subco_version_increments(reconciler, state):
    reconciler.on_update_notification(_msg({"versions": {"subcoVersion": ""}}))
    assert state.current == "1.0.1"


def test_sentinel_is_kept_and_still_published(transport, topics):
    s = VersionState(current=DETECTING)
    r = VersionReconciler(s, transport, topics, image_family="subco")
    r.on_update_notification(b"{}")
    assert s.current == DETECTING
    assert transport.on(topics.version()) == [DETECTING]


def test_image_list_replaced_not_merged(reconciler, state):
    reconciler.on_update_notification(_msg({"imageVersions": ["a", "b"], "versions": {"subcoVersion": "1.0.0"}}))
    reconciler.on_update_notification(_msg({"imageVersions": ["c"], "versions": {"subcoVersion": "1.0.0"}}))
    assert state.known_image_versions == ["c"]


def test_image_list_untouched_when_absent(reconciler, state):
    reconciler.on_update_notification(_msg({"imageVersions": ["x-subco:1"]}))
    reconciler.on_update_notification(_msg({"versions": {"subcoVersion": "3.0.0"}}))
    assert state.known_image_versions == ["x-subco:1"]


def test_current_image_unchanged_when_family_absent(reconciler, state):
    reconciler.on_update_notification(_msg({"imageVersions": ["other:v9"]}))
    assert state.known_image_versions == ["other:v9"]
    assert state.current_image_version == "fleet-subco:v1"


def test_first_family_match_becomes_current_image(reconciler, state):
    reconciler.on_update_notification(_msg({"imageVersions": ["db:5", "fleet-subco:v7", "subco-tools:1"]}))
    assert state.current_image_version == "fleet-subco:v7"


def test_scenario_image_announcement_with_empty_versions(reconciler, state, transport, topics):
    reconciler.on_update_notification(_msg({"imageVersions": ["fleet-subco:v2"], "versions": {}}))
    assert state.known_image_versions == ["fleet-subco:v2"]
    assert state.current_image_version == "fleet-subco:v2"
    assert state.current == "1.0.1"
    assert transport.on(topics.version()) == ["1.0.1"]


@pytest.mark.parametrize("payload", [b"{oops", b'{"imageVersions": [1]}', b"null"])
def test_malformed_payload_is_a_no_op(reconciler, state, transport, payload):
    before = state.view()
    reconciler.on_update_notification(payload)
    assert state.view() == before
    assert transport.published == []


def test_malformed_message_does_not_affect_next(reconciler, state):
    reconciler.on_update_notification(b"garbage")
    reconciler.on_update_notification(b"{}")
    assert state.current == "1.0.1"


def test_explicit_notification_is_content_idempotent(reconciler, state):
    msg = _msg({"imageVersions": ["fleet-subco:v3"], "versions": {"subcoVersion": "3.1.4"}})
    reconciler.on_update_notification(msg)
    first = state.view()
    reconciler.on_update_notification(msg)
    assert state.view() == first


def test_publish_failure_is_swallowed(reconciler, state, transport):
    transport.fail_publish = True
    reconciler.on_update_notification(_msg({"versions": {"subcoVersion": "4.0.0"}}))
    assert state.current == "4.0.0"


# -------------------------
# getVersion
# -------------------------
def test_version_query_publishes_once_without_mutation(reconciler, state, transport, topics):
    before = state.view()
    reconciler.on_version_query(b"")
    assert transport.on(topics.version()) == ["1.0.0"]
    assert len(transport.published) == 1
    assert state.view() == before


def test_every_version_query_publishes(reconciler, transport, topics):
    for _ in range(3):
        reconciler.on_version_query("ignored")
    assert transport.on(topics.version()) == ["1.0.0"] * 3


def test_version_query_swallows_publish_error(reconciler, transport):
    transport.fail_publish = True
    reconciler.on_version_query()
