from device_agent.core.actions import (
    ActionPlan,
    Back,
    Click,
    Complete,
    Home,
    OpenApp,
    Respond,
    Scroll,
    ScrollDirection,
    Type,
    Wait,
)
from device_agent.core.apps import AppTable
from device_agent.core.errors import ErrorKind
from device_agent.core.executor import ActionExecutor
from device_agent.core.types import PlanStatus
from device_agent.devices.fake import FakeDevice, node, window


def make_executor(device):
    sleeps = []
    executor = ActionExecutor(device, apps=AppTable(), settle_ms=300, sleep=sleeps.append)
    return executor, sleeps


def plan(*actions, complete=False):
    return ActionPlan(reasoning="", actions=tuple(actions), is_complete=complete)


def form_screen():
    name_field = node("android.widget.EditText", label="Name field", bounds=(0, 400, 1080, 500), editable=True)
    return window("com.example.form", node(text="Your details", bounds=(0, 100, 1080, 200)), name_field), name_field


def test_unreachable_target_does_not_stop_plan():
    screen, name_field = form_screen()
    device = FakeDevice(screen)
    executor, sleeps = make_executor(device)

    report = executor.execute(plan(Click("Next"), Type("Name field", "Alice"), Complete("filled form")))

    assert [r.succeeded for r in report.results] == [False, True, True]
    assert report.results[0].error_kind is ErrorKind.ACTION_UNREACHABLE
    assert report.status is PlanStatus.PARTIALLY_FAILED
    assert not report.completed_fully
    assert report.task_complete
    assert device.typed[name_field.handle] == "Alice"
    # settle after the click and after the type
    assert sleeps == [0.3, 0.3]


def test_wait_is_clamped():
    executor, sleeps = make_executor(FakeDevice(window("com.example")))
    report = executor.execute(plan(Wait(50000)))
    result = report.results[0]
    assert result.succeeded and result.noop
    assert sleeps == [10.0]
    assert "10000" in result.detail
    assert report.completed_fully


def test_nothing_runs_after_terminal_action():
    device = FakeDevice(window("com.example", node(text="Wi-Fi", clickable=True)))
    executor, _ = make_executor(device)
    report = executor.execute(plan(Respond("Here you go"), Click("Wi-Fi"), Back()))

    assert report.results[0].succeeded
    assert all(r.skipped for r in report.results[1:])
    assert device.calls_named("click_node") == []
    assert device.calls_named("back") == []
    assert report.status is PlanStatus.SUCCEEDED
    assert isinstance(report.terminal, Respond)


def test_each_targeted_action_sees_a_fresh_screen():
    wifi = window("com.android.settings", node(text="Wi-Fi", clickable=True))
    home = window("com.android.settings", node(text="Network & internet", clickable=True))
    device = FakeDevice(home, transitions={"Network & internet": wifi})
    executor, _ = make_executor(device)

    report = executor.execute(plan(Click("Network & internet"), Click("Wi-Fi")))

    assert report.completed_fully
    assert len(device.calls_named("read_ui_tree")) == 2
    assert [r.strategy for r in report.results] == ["node", "node"]


def test_rejected_node_click_falls_back_to_tap():
    device = FakeDevice(window(
        "com.android.settings",
        node("android.widget.LinearLayout", bounds=(0, 320, 1080, 440), clickable=True, children=[
            node("android.widget.TextView", text="Wi-Fi", bounds=(40, 340, 400, 420)),
        ]),
    ))
    device.reject_native = {"click"}
    executor, _ = make_executor(device)

    report = executor.execute(plan(Click("Wi-Fi")))

    assert report.results[0].succeeded
    assert report.results[0].strategy == "gesture"
    assert device.calls_named("tap") == [("tap", 220, 380)]


def test_coordinate_click_skips_capture():
    device = FakeDevice(window("com.example"))
    executor, _ = make_executor(device)
    report = executor.execute(plan(Click("540,1200")))
    assert report.results[0].strategy == "coordinates"
    assert device.calls_named("tap") == [("tap", 540, 1200)]
    assert device.calls_named("read_ui_tree") == []


def test_rejected_set_text_types_through_focus():
    screen, name_field = form_screen()
    device = FakeDevice(screen)
    device.reject_native = {"set_text"}
    executor, _ = make_executor(device)

    report = executor.execute(plan(Type("", "Bob", clear_first=False)))

    assert report.results[0].strategy == "gesture"
    assert device.calls_named("tap") == [("tap", 540, 450)]
    assert device.calls_named("input_text") == [("input_text", "Bob", False)]


def test_scroll_uses_largest_scrollable_then_swipe():
    device = FakeDevice(window(
        "com.example",
        node("androidx.recyclerview.widget.RecyclerView", bounds=(0, 0, 1080, 2000), scrollable=True),
        node("android.widget.HorizontalScrollView", bounds=(0, 2000, 1080, 2200), scrollable=True),
    ))
    executor, _ = make_executor(device)

    report = executor.execute(plan(Scroll(ScrollDirection.DOWN)))
    assert report.results[0].strategy == "node"
    handle = device.window.root.children[0].handle
    assert device.calls_named("scroll_node") == [("scroll_node", handle, "down")]

    device.reject_native = {"scroll"}
    report = executor.execute(plan(Scroll(ScrollDirection.DOWN)))
    assert report.results[0].strategy == "gesture"
    assert device.calls_named("swipe") == [("swipe", 540, 1400, 540, 600, 300)]


def test_open_app():
    settings = window("com.android.settings", node(text="Settings"))
    device = FakeDevice(window("com.launcher"), apps={"com.android.settings": settings})
    executor, _ = make_executor(device)

    report = executor.execute(plan(OpenApp("Settings"), OpenApp("frobnicator"), OpenApp("camera")))

    assert report.results[0].succeeded
    assert device.window is settings
    assert report.results[1].error_kind is ErrorKind.UNKNOWN_APP
    # known name but not installed on this device
    assert report.results[2].error_kind is ErrorKind.UNKNOWN_APP
    assert report.status is PlanStatus.PARTIALLY_FAILED


def test_permission_revoked_aborts():
    device = FakeDevice(window("com.example", node(text="Wi-Fi", clickable=True)))
    device.revoke()
    executor, _ = make_executor(device)

    report = executor.execute(plan(Click("Wi-Fi"), Back(), Home()))

    assert report.status is PlanStatus.ABORTED
    assert report.results[0].error_kind is ErrorKind.PERMISSION_REVOKED
    assert all(r.skipped for r in report.results[1:])


def test_missing_window_is_not_fatal():
    device = FakeDevice(window=None)
    executor, _ = make_executor(device)

    report = executor.execute(plan(Click("Wi-Fi"), Back()))

    assert report.results[0].error_kind is ErrorKind.NO_ACTIVE_WINDOW
    assert report.results[1].succeeded
    assert report.status is PlanStatus.PARTIALLY_FAILED


def test_cancellation_is_checked_between_actions():
    device = FakeDevice(window("com.example"))
    executor, _ = make_executor(device)

    report = executor.execute(
        plan(Back(), Home(), Back()),
        is_cancelled=lambda: len(device.calls) >= 1,
    )

    assert report.results[0].succeeded
    assert [r.detail for r in report.results[1:]] == ["cancelled", "plan aborted"]
    assert report.status is PlanStatus.ABORTED
    assert device.calls_named("home") == []
    assert len(report.results) == 3
