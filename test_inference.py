from io import BytesIO

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from PIL import Image

from device_agent.agents.inference import ChatModelInference, InferenceRequest, build_messages
from device_agent.core.errors import InferenceUnavailable
from device_agent.core.history import ChatMessage
from device_agent.core.memory import MemoryItem
from device_agent.devices.fake import node, window
from device_agent.screen.snapshot import build_screen_state


def settings_screen():
    return build_screen_state(window("com.android.settings", node(text="Wi-Fi", clickable=True)))


def png_bytes(size=(1600, 900)):
    buf = BytesIO()
    Image.new("RGB", size, (30, 120, 200)).save(buf, format="PNG")
    return buf.getvalue()


def test_messages_carry_memory_history_and_screen():
    request = InferenceRequest(
        user_message="turn on wifi",
        screen=settings_screen(),
        history=[ChatMessage("user", "hi"), ChatMessage("assistant", "Hello!")],
        memories=[MemoryItem("wifi_network", "HomeNet", "device")],
    )
    messages = build_messages(request)

    assert [type(m) for m in messages] == [SystemMessage, HumanMessage, AIMessage, HumanMessage]
    assert "- wifi_network: HomeNet (device)" in messages[0].content
    last = messages[-1].content
    assert last.index("[Current Screen]") < last.index("Wi-Fi") < last.index("[User Request]")
    assert last.endswith("turn on wifi")


def test_messages_without_screen():
    messages = build_messages(InferenceRequest(user_message="hello"))
    assert len(messages) == 2
    assert "[Current Screen]" not in messages[-1].content
    assert "Remembered information" not in messages[0].content


def test_screenshot_becomes_image_block():
    messages = build_messages(InferenceRequest(user_message="what is this", screenshot=png_bytes()))
    blocks = messages[-1].content
    assert blocks[0] == {"type": "text", "text": "[User Request]\nwhat is this"}
    assert blocks[1]["image_url"]["url"].startswith("data:image/jpeg;base64,")


def test_broken_screenshot_falls_back_to_text():
    messages = build_messages(InferenceRequest(user_message="hello", screenshot=b"not a png"))
    assert isinstance(messages[-1].content, str)


class FakeLLM:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    def invoke(self, messages):
        self.calls.append(messages)
        if self.error:
            raise self.error
        return AIMessage(content=self.content)


def test_model_text_is_returned():
    llm = FakeLLM(content='{"response": "hi", "actions": []}')
    raw = ChatModelInference(llm=llm).complete(InferenceRequest(user_message="hi"))
    assert raw == '{"response": "hi", "actions": []}'
    assert len(llm.calls) == 1


def test_list_content_is_flattened():
    llm = FakeLLM(content=[{"type": "text", "text": '{"response":'}, {"type": "text", "text": ' "ok"}'}])
    assert ChatModelInference(llm=llm).complete(InferenceRequest(user_message="x")) == '{"response": "ok"}'


def test_model_errors_become_unavailable():
    llm = FakeLLM(error=TimeoutError("read timed out"))
    with pytest.raises(InferenceUnavailable):
        ChatModelInference(llm=llm).complete(InferenceRequest(user_message="x"))
