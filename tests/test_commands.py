"""Tests for command validation against the vocabulary."""

import pytest

from aurora_relay.commands import AcceptedCommand, CommandSubmission, validate
from aurora_relay.errors import RejectionError, RejectionKind
from aurora_relay.vocabulary import (
    DEFAULT_VOCABULARY,
    CommandVocabulary,
    DeviceClass,
    FixedVocabularyDevice,
    OpenParameterDevice,
)


def _submit(**payload):
    return validate(CommandSubmission.from_payload(payload), DEFAULT_VOCABULARY)


def _rejection(**payload) -> RejectionKind:
    with pytest.raises(RejectionError) as excinfo:
        _submit(**payload)
    return excinfo.value.kind


def test_door_open_is_accepted_with_empty_parameters():
    accepted = _submit(device="DOOR", command="DOOR_OPEN")

    assert accepted == AcceptedCommand(
        device="DOOR", command="DOOR_OPEN", parameters={}, device_id="DOOR"
    )
    assert accepted.as_dict() == {
        "device": "DOOR",
        "command": "DOOR_OPEN",
        "parameters": {},
        "deviceId": "DOOR",
    }


def test_command_from_another_device_is_unknown():
    assert _rejection(device="DOOR", command="CURTAIN_OPEN") is RejectionKind.UNKNOWN_COMMAND


def test_command_match_is_case_sensitive():
    assert _rejection(device="DOOR", command="door_open") is RejectionKind.UNKNOWN_COMMAND
    assert _rejection(device="DOOR", command="DOOR_OPEN ") is RejectionKind.UNKNOWN_COMMAND


@pytest.mark.parametrize(
    "payload",
    [
        {"command": "DOOR_OPEN"},
        {"device": "", "command": "DOOR_OPEN"},
        {"device": "DOOR"},
        {"device": "DOOR", "command": ""},
        {"device": "DOOR", "command": None},
        {"device": 7, "command": "DOOR_OPEN"},
    ],
)
def test_missing_device_or_command_is_rejected(payload):
    assert _rejection(**payload) is RejectionKind.MISSING_FIELD


def test_missing_field_is_checked_before_unknown_device():
    assert _rejection(device="GARAGE") is RejectionKind.MISSING_FIELD


def test_unknown_device_is_rejected():
    assert _rejection(device="GARAGE", command="GARAGE_OPEN") is RejectionKind.UNKNOWN_DEVICE


def test_device_lookup_is_case_sensitive():
    assert _rejection(device="door", command="DOOR_OPEN") is RejectionKind.UNKNOWN_DEVICE


def test_custom_without_parameters_is_rejected():
    assert _rejection(device="CUSTOM", command="ANYTHING") is RejectionKind.MISSING_PARAMETERS


@pytest.mark.parametrize("parameters", [None, [], [1, 2], "x", 3, True])
def test_custom_requires_parameters_object(parameters):
    kind = _rejection(device="CUSTOM", command="ANYTHING", parameters=parameters)
    assert kind is RejectionKind.MISSING_PARAMETERS


def test_custom_with_parameters_object_is_accepted():
    accepted = _submit(device="CUSTOM", command="ANYTHING", parameters={"x": 1})

    assert accepted.device == "CUSTOM"
    assert accepted.command == "ANYTHING"
    assert accepted.parameters == {"x": 1}


def test_custom_accepts_empty_parameters_object():
    accepted = _submit(device="CUSTOM", command="RESET", parameters={})
    assert accepted.parameters == {}


def test_every_fixed_device_accepts_exactly_its_own_commands():
    for name in DEFAULT_VOCABULARY:
        spec = DEFAULT_VOCABULARY.get(name)
        if not isinstance(spec, FixedVocabularyDevice):
            continue
        for command in spec.commands:
            assert _submit(device=name, command=command).command == command
        foreign = [
            command
            for other in DEFAULT_VOCABULARY
            if other != name
            and isinstance(DEFAULT_VOCABULARY.get(other), FixedVocabularyDevice)
            for command in DEFAULT_VOCABULARY.get(other).commands
        ]
        for command in foreign:
            assert _rejection(device=name, command=command) is RejectionKind.UNKNOWN_COMMAND


def test_device_id_targets_a_specific_instance():
    accepted = _submit(device="CURTAIN", command="CURTAIN_CLOSE", deviceId="curtain-bedroom")

    assert accepted.device_id == "curtain-bedroom"
    assert accepted.device == "CURTAIN"


def test_blank_device_id_is_rejected():
    kind = _rejection(device="CURTAIN", command="CURTAIN_CLOSE", deviceId=" ")
    assert kind is RejectionKind.MISSING_FIELD


@pytest.mark.parametrize("device_id", ["front#1", "hall/door", "door+", "door\x00"])
def test_device_id_with_topic_characters_is_rejected(device_id):
    kind = _rejection(device="DOOR", command="DOOR_OPEN", deviceId=device_id)
    assert kind is RejectionKind.MISSING_FIELD


def test_validation_is_deterministic_and_does_not_alias_input():
    parameters = {"brightness": {"level": 40}}
    submission = CommandSubmission.from_payload(
        {"device": "CUSTOM", "command": "DIM", "parameters": parameters}
    )

    first = validate(submission, DEFAULT_VOCABULARY)
    second = validate(submission, DEFAULT_VOCABULARY)
    parameters["brightness"]["level"] = 99

    assert first == second
    assert first.parameters == {"brightness": {"level": 40}}


def test_rejection_carries_machine_readable_body():
    with pytest.raises(RejectionError) as excinfo:
        _submit(device="DOOR", command="CURTAIN_OPEN")

    body = excinfo.value.as_dict()
    assert body["error"] == "UnknownCommand"
    assert "CURTAIN_OPEN" in body["detail"]


def test_new_open_device_needs_no_validator_change():
    vocabulary = CommandVocabulary(
        {
            DeviceClass.DOOR: FixedVocabularyDevice(DeviceClass.DOOR, frozenset({"DOOR_OPEN"})),
            DeviceClass.SOLAR_PANEL: OpenParameterDevice(DeviceClass.SOLAR_PANEL),
        }
    )

    accepted = validate(
        CommandSubmission(device="SOLAR_PANEL", command="TILT", parameters={"deg": 30}),
        vocabulary,
    )

    assert accepted.parameters == {"deg": 30}
    with pytest.raises(RejectionError) as excinfo:
        validate(CommandSubmission(device="CURTAIN", command="CURTAIN_OPEN"), vocabulary)
    assert excinfo.value.kind is RejectionKind.UNKNOWN_DEVICE
