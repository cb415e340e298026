import pytest

from device_agent.core.apps import AppTable


def test_default_android_names():
    apps = AppTable()
    assert apps.resolve("settings") == "com.android.settings"
    assert apps.resolve("Chrome") == "com.android.chrome"
    assert apps.resolve("  Play   Store ") == "com.android.vending"
    assert apps.resolve("the camera app") == "com.android.camera2"


def test_identifiers_pass_through():
    apps = AppTable()
    assert apps.resolve("org.example.notes") == "org.example.notes"
    assert apps.resolve("https://example.com/inbox") == "https://example.com/inbox"


def test_unknown_name():
    apps = AppTable()
    assert apps.resolve("teleporter") is None
    assert "teleporter" not in apps
    assert "gmail" in apps


def test_register_and_unregister():
    apps = AppTable({"notes": "com.example.notes"})
    assert apps.names() == ["notes"]
    apps.register("Notes", "com.other.notes")
    assert apps.resolve("notes") == "com.other.notes"
    assert apps.unregister("NOTES")
    assert not apps.unregister("notes")
    assert apps.resolve("notes") is None
    with pytest.raises(ValueError):
        apps.register("", "com.example")
