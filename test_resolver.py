from device_agent.core.actions import Click, Type
from device_agent.core.types import Capability
from device_agent.devices.fake import node, window
from device_agent.screen.resolver import ElementResolver, TargetDescriptor
from device_agent.screen.snapshot import build_screen_state


def settings_screen():
    return build_screen_state(window(
        "com.android.settings",
        node("android.widget.TextView", text="Network & internet", bounds=(0, 200, 1080, 320), clickable=True),
        node("android.widget.LinearLayout", bounds=(0, 320, 1080, 440), clickable=True, children=[
            node("android.widget.TextView", text="Wi-Fi", bounds=(40, 340, 400, 420)),
        ]),
        node("android.widget.TextView", text="Wi-Fi preferences", bounds=(0, 440, 1080, 560), clickable=True),
        node("android.widget.ImageButton", label="Search settings", bounds=(900, 40, 1040, 160), clickable=True),
        node("android.widget.EditText", label="Name", bounds=(0, 600, 1080, 700), editable=True),
        node("android.widget.EditText", label="Email", bounds=(0, 700, 1080, 800), editable=True),
    ))


resolver = ElementResolver()


def test_exact_text_beats_substring():
    state = settings_screen()
    hit = resolver.resolve(state, TargetDescriptor(text="Wi-Fi", capability=Capability.CLICKABLE))
    assert hit is not None
    assert hit.text == "Wi-Fi"
    # The label itself is not clickable; its row is.
    assert state.nearest_with(hit, Capability.CLICKABLE).kind == "android.widget.LinearLayout"


def test_exact_match_is_case_insensitive():
    hit = resolver.resolve(settings_screen(), TargetDescriptor(text="wi-fi"))
    assert hit.text == "Wi-Fi"


def test_accessible_label_tier():
    hit = resolver.resolve(settings_screen(), TargetDescriptor(text="search settings"))
    assert hit.kind == "android.widget.ImageButton"


def test_substring_tier():
    hit = resolver.resolve(settings_screen(), TargetDescriptor(text="preferences"))
    assert hit.text == "Wi-Fi preferences"


def test_index_among_capability():
    hit = resolver.resolve(settings_screen(), TargetDescriptor(index=1, capability=Capability.EDITABLE))
    assert hit.accessible_label == "Email"


def test_index_out_of_range_is_not_found():
    assert resolver.resolve(settings_screen(), TargetDescriptor(index=5, capability=Capability.EDITABLE)) is None


def test_not_found():
    assert resolver.resolve(settings_screen(), TargetDescriptor(text="Bluetooth")) is None


def test_tie_break_prefers_larger_area_then_traversal_order():
    state = build_screen_state(window(
        "com.example",
        node(text="OK", bounds=(0, 0, 100, 50), clickable=True),
        node(text="OK", bounds=(0, 100, 300, 200), clickable=True),
        node(text="OK", bounds=(0, 300, 300, 400), clickable=True),
    ))
    hit = resolver.resolve(state, TargetDescriptor(text="OK", capability=Capability.CLICKABLE))
    assert hit.bounds.top == 100


def test_capability_preferred_within_tier():
    state = build_screen_state(window(
        "com.example",
        node("android.widget.TextView", text="Send", bounds=(0, 0, 1080, 400)),
        node("android.widget.Button", text="Send", bounds=(800, 2000, 1000, 2100), clickable=True),
    ))
    hit = resolver.resolve(state, TargetDescriptor(text="Send", capability=Capability.CLICKABLE))
    assert hit.kind == "android.widget.Button"


def test_resolution_is_deterministic():
    state = settings_screen()
    target = TargetDescriptor(text="wi", capability=Capability.CLICKABLE)
    first = resolver.resolve(state, target)
    for _ in range(5):
        assert resolver.resolve(state, target) == first


def test_coordinate_targets_do_not_match_text():
    target = TargetDescriptor.parse("540, 1200", capability=Capability.CLICKABLE)
    assert target.text is None
    assert target.coordinate_hint == (540, 1200)
    assert resolver.resolve(settings_screen(), target) is None

    rect = TargetDescriptor.parse("[0,0][100,200]")
    assert rect.coordinate_hint == (50, 100)


def test_descriptor_from_actions():
    click = TargetDescriptor.from_action(Click("Wi-Fi", index=2))
    assert (click.text, click.index, click.capability) == ("Wi-Fi", 2, Capability.CLICKABLE)

    blank_type = TargetDescriptor.from_action(Type("", "hello"))
    assert blank_type.index == 0
    assert blank_type.capability is Capability.EDITABLE
    hit = resolver.resolve(settings_screen(), blank_type)
    assert hit.accessible_label == "Name"
