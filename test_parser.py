import json

from device_agent.agents.heuristics import HeuristicResponder, back_rule
from device_agent.agents.parser import ActionPlanParser, extract_json_object, recover_response_text
from device_agent.core.actions import Back, Click, OpenApp, Respond, Scroll, ScrollDirection, Type, Wait
from device_agent.core.config import FALLBACK_MESSAGE
from device_agent.devices.fake import node, window
from device_agent.screen.snapshot import build_screen_state

parser = ActionPlanParser()


def test_well_formed_response():
    raw = json.dumps({
        "thought": "User wants Wi-Fi settings",
        "response": "Opening Wi-Fi",
        "actions": [
            {"type": "click", "target": "Network & internet"},
            {"type": "swipe", "direction": "up"},
            {"type": "click", "target": "Wi-Fi", "index": 1},
        ],
        "complete": False,
        "some_future_field": 42,
    })
    plan = parser.parse(raw)
    assert plan.actions == (Click("Network & internet"), Click("Wi-Fi", index=1))
    assert plan.reasoning == "User wants Wi-Fi settings"
    assert plan.response == "Opening Wi-Fi"
    assert plan.is_complete is False
    assert len(plan.warnings) == 1
    assert not plan.used_fallback


def test_defaults_and_aliases():
    raw = json.dumps({
        "actions": [
            {"type": "type", "target": "Search", "text": "weather"},
            {"type": "type", "target": "Search", "text": "more", "clear": False},
            {"type": "wait"},
            {"type": "wait", "ms": 250},
            {"type": "open_app", "app": "Settings"},
            {"type": "open_app", "appName": "Chrome"},
            {"type": "scroll", "direction": "DOWN"},
            {"type": "back"},
        ],
    })
    plan = parser.parse(raw)
    assert plan.actions == (
        Type("Search", "weather", clear_first=True),
        Type("Search", "more", clear_first=False),
        Wait(1000),
        Wait(250),
        OpenApp("Settings"),
        OpenApp("Chrome"),
        Scroll(ScrollDirection.DOWN),
        Back(),
    )
    # complete defaults to true when the model leaves it out
    assert plan.is_complete is True


def test_entries_missing_required_fields_are_dropped():
    raw = json.dumps({
        "actions": [
            {"type": "click"},
            {"type": "type", "target": "Name"},
            {"type": "scroll", "direction": "sideways"},
            {"type": "open_app"},
            {"type": "wait", "ms": -5},
            "click Next",
            {"type": "home"},
        ],
        "complete": False,
    })
    plan = parser.parse(raw)
    assert len(plan.actions) == 1
    assert len(plan.warnings) == 6


def test_non_finite_numbers_only_drop_their_entry():
    raw = '{"response": "r", "actions": [' \
        '{"type": "click", "target": "OK", "index": 1e999}, ' \
        '{"type": "wait", "ms": NaN}, ' \
        '{"type": "back"}], ' \
        '"memory": [{"key": "k", "value": "v", "importance": Infinity}], "complete": false}'
    plan = parser.parse(raw)
    assert plan.actions == (Back(),)
    assert not plan.used_fallback
    assert len(plan.warnings) == 3
    assert plan.memory_updates == ()


def test_code_fence_and_prose_around_json():
    raw = 'Here is the plan:\n```json\n{"response": "Going back", "actions": [{"type": "back"}]}\n```\nDone.'
    plan = parser.parse(raw)
    assert plan.actions == (Back(),)
    assert plan.response == "Going back"

    bare = 'Sure! {"response": "Home", "actions": [{"type": "home"}], "complete": true} hope that helps'
    assert extract_json_object(bare)["response"] == "Home"


def test_braces_inside_strings_do_not_break_extraction():
    raw = 'ok {"response": "use {curly} braces", "actions": [{"type": "back"}]} trailing'
    assert extract_json_object(raw)["response"] == "use {curly} braces"


def test_list_wrapped_plan():
    raw = json.dumps([{"response": "Scrolling", "actions": [{"type": "scroll", "direction": "up"}]}])
    plan = parser.parse(raw)
    assert plan.actions == (Scroll(ScrollDirection.UP),)


def test_empty_incomplete_plan_becomes_respond():
    plan = parser.parse(json.dumps({"response": "Which contact?", "actions": [], "complete": False}))
    assert plan.actions == (Respond("Which contact?"),)

    plan = parser.parse(json.dumps({"actions": [], "complete": False}))
    assert plan.actions == (Respond(FALLBACK_MESSAGE),)


def test_memory_entries():
    raw = json.dumps({
        "response": "Noted",
        "actions": [],
        "memory": [
            {"key": "favorite_color", "value": "green"},
            {"key": "home_city", "value": "Lisbon", "category": "location", "importance": 15},
            {"value": "no key"},
            "junk",
        ],
    })
    plan = parser.parse(raw)
    assert [(m.key, m.category) for m in plan.memory_updates] == [
        ("favorite_color", "general"),
        ("home_city", "location"),
    ]
    assert plan.memory_updates[1].importance == 10
    assert len(plan.warnings) == 2


def test_prose_open_app():
    plan = parser.parse("Sure, opening settings")
    assert plan.actions == (OpenApp("settings"),)
    assert plan.is_complete is False
    assert plan.used_fallback
    assert plan.response == "Sure, opening settings"
    assert any("plan_parse_fallback" in w for w in plan.warnings)


def test_prose_heuristics():
    assert parser.parse("I'll scroll down to find it.").actions == (Scroll(ScrollDirection.DOWN),)
    assert parser.parse("Let me go back.").actions == (Back(),)
    assert parser.parse("Tapping on Wi-Fi.").actions == (Click("Wi-Fi"),)
    assert parser.parse('Typing "hello world" into the message box').actions == (
        Type("message box", "hello world"),
    )


def test_malformed_responses_never_raise():
    for raw in ["", "{{{", "null", "[]", '{"actions": [', "```json\n```", None]:
        plan = parser.parse(raw)
        assert len(plan.actions) >= 1


def test_unmatched_prose_gets_fallback_message():
    plan = parser.parse("The weather is lovely today.")
    assert plan.actions == (Respond(FALLBACK_MESSAGE),)
    assert plan.used_fallback


def test_truncated_json_recovers_response():
    raw = '{"thought": "camera", "response": "Opening the camera", "actions": [{"type": "open_app", "app": "cam'
    assert recover_response_text(raw) == "Opening the camera"
    plan = parser.parse(raw)
    assert plan.actions == (OpenApp("camera"),)
    assert plan.response == "Opening the camera"


def test_screen_query_lists_labels():
    screen = build_screen_state(window(
        "com.android.settings",
        node(text="Wi-Fi", clickable=True),
        node(text="Bluetooth", clickable=True),
    ))
    plan = parser.parse("What's on my screen right now?", screen)
    assert isinstance(plan.actions[0], Respond)
    assert "Wi-Fi" in plan.actions[0].message
    assert "Bluetooth" in plan.actions[0].message


def test_heuristic_rules_are_configurable():
    only_back = ActionPlanParser(HeuristicResponder([back_rule]))
    assert only_back.parse("Sure, opening settings").actions == (Respond(FALLBACK_MESSAGE),)
    assert only_back.parse("going back").actions == (Back(),)
