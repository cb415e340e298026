import subprocess

import pytest

from device_agent.core.errors import InteractionRejected, PermissionRevoked
from device_agent.devices import adb
from device_agent.devices.adb import AdbDevice, parse_uiautomator_dump
from device_agent.screen.snapshot import build_screen_state

DUMP = """<?xml version='1.0' encoding='UTF-8' standalone='yes' ?>
<hierarchy rotation="0">
  <node index="0" text="" resource-id="" class="android.widget.FrameLayout" package="com.android.settings"
        content-desc="" checkable="false" checked="false" clickable="false" scrollable="false"
        bounds="[0,0][1080,2400]">
    <node index="0" text="" resource-id="com.android.settings:id/search_bar" class="android.widget.EditText"
          package="com.android.settings" content-desc="Search settings" checkable="false" checked="false"
          clickable="true" scrollable="false" bounds="[40,120][1040,240]" />
    <node index="1" text="" resource-id="com.android.settings:id/recycler_view"
          class="androidx.recyclerview.widget.RecyclerView" package="com.android.settings" content-desc=""
          checkable="false" checked="false" clickable="false" scrollable="true" bounds="[0,260][1080,2400]">
      <node index="0" text="Network &amp; internet" resource-id="android:id/title" class="android.widget.TextView"
            package="com.android.settings" content-desc="" checkable="false" checked="false" clickable="false"
            scrollable="false" bounds="[180,300][700,360]" />
      <node index="1" text="Use Wi-Fi" resource-id="" class="android.widget.Switch" package="com.android.settings"
            content-desc="" checkable="true" checked="true" clickable="true" scrollable="false"
            bounds="[900,300][1040,360]" />
    </node>
  </node>
</hierarchy>
UI hierchary dumped to: /dev/tty"""


def test_parse_uiautomator_dump():
    tree = parse_uiautomator_dump(DUMP)
    assert tree.app_identifier == "com.android.settings"

    state = build_screen_state(tree)
    search, recycler, title, switch = state.elements[1:]
    assert search.editable and search.clickable
    assert search.accessible_label == "Search settings"
    assert search.id == "search_bar"
    assert recycler.scrollable
    assert title.text == "Network & internet"
    assert title.bounds.as_list() == [180, 300, 700, 360]
    assert switch.checked is True
    assert title.checked is None


def test_parse_rejects_garbage():
    assert parse_uiautomator_dump("ERROR: could not get idle state.") is None
    assert parse_uiautomator_dump("<hierarchy><node") is None


class FakeRun:
    def __init__(self, returncode=0, stdout=b"", stderr=b""):
        self.commands = []
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    def __call__(self, cmd, capture_output, timeout):
        self.commands.append(cmd)
        return subprocess.CompletedProcess(cmd, self.returncode, self.stdout, self.stderr)


def test_gestures_use_adb_shell_input(monkeypatch):
    run = FakeRun()
    monkeypatch.setattr(adb.subprocess, "run", run)
    device = AdbDevice(serial="emulator-5554", adb_path="adb")

    device.tap(540, 1200)
    device.swipe(540, 1400, 540, 600, 300)
    device.input_text("hello world", clear_first=False)
    device.back()

    assert run.commands[0] == ["adb", "-s", "emulator-5554", "shell", "input", "tap", "540", "1200"]
    assert run.commands[1][-6:] == ["swipe", "540", "1400", "540", "600", "300"]
    assert run.commands[2][-1] == "hello%sworld"
    assert run.commands[3][-2:] == ["keyevent", "4"]


def test_node_calls_are_rejected():
    state = build_screen_state(parse_uiautomator_dump(DUMP))
    device = AdbDevice()
    with pytest.raises(InteractionRejected):
        device.click_node(state.elements[1])


def test_unauthorized_device_is_permission_loss(monkeypatch):
    monkeypatch.setattr(adb.subprocess, "run", FakeRun(returncode=1, stderr=b"error: device unauthorized."))
    with pytest.raises(PermissionRevoked):
        AdbDevice().tap(1, 1)


def test_other_adb_failures_are_rejections(monkeypatch):
    monkeypatch.setattr(adb.subprocess, "run", FakeRun(returncode=255, stderr=b"input: bad argument"))
    with pytest.raises(InteractionRejected):
        AdbDevice().tap(1, 1)


def test_launch_without_activity_is_rejected(monkeypatch):
    monkeypatch.setattr(adb.subprocess, "run", FakeRun(stdout=b"** No activities found to run, monkey aborted."))
    with pytest.raises(InteractionRejected):
        AdbDevice().launch_app("com.example.missing")
