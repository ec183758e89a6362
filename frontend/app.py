import base64
import time
from typing import Any, Dict, List, Optional

import requests
import streamlit as st

from config.settings import Settings
from frontend.client import ApiError, ChatApiClient
from frontend.conversation import Conversation, is_temp_id
from frontend.poller import GenerationPoller

settings = Settings.from_env()
BACKEND_URL = settings.BACKEND_URL


def get_client(user_id: str) -> ChatApiClient:
    client = st.session_state.get("client")
    if client is None or client.user_id != user_id:
        client = ChatApiClient(BACKEND_URL, user_id=user_id)
        st.session_state["client"] = client
    return client


def get_poller(client: ChatApiClient) -> GenerationPoller:
    poller = st.session_state.get("poller")
    if poller is None or st.session_state.get("poller_user") != client.user_id:
        if poller is not None:
            poller.stop_all()
        poller = GenerationPoller(client.get_generation_status, interval=settings.POLL_INTERVAL)
        st.session_state["poller"] = poller
        st.session_state["poller_user"] = client.user_id
        st.session_state["poll_handles"] = {}
    return poller


def teardown_polling() -> None:
    """Dừng mọi vòng poll của chat hiện tại (đổi chat / xóa chat / đổi user)."""
    for handle in st.session_state.get("poll_handles", {}).values():
        handle.stop()
    st.session_state["poll_handles"] = {}


def sync_polling(poller: GenerationPoller, conversation: Conversation) -> None:
    handles = st.session_state.setdefault("poll_handles", {})
    in_flight = set(conversation.in_flight_generation_ids())

    for generation_id in list(handles):
        if generation_id not in in_flight or handles[generation_id].stopped:
            handles.pop(generation_id).stop()

    for generation_id in in_flight:
        if generation_id not in handles:
            handles[generation_id] = poller.watch(generation_id, conversation.apply_generation)


def open_chat(client: ChatApiClient, chat_id: str) -> None:
    teardown_polling()
    chat = client.get_chat(chat_id)
    st.session_state["chat_id"] = chat_id
    st.session_state["conversation"] = Conversation(chat_id, chat.get("messages") or [])


def to_base64(files) -> Optional[List[str]]:
    if not files:
        return None
    # base64 thuần, không có prefix data URL
    return [base64.b64encode(f.getvalue()).decode("ascii") for f in files]


def render_generation(client: ChatApiClient, generation: Optional[Dict[str, Any]]) -> None:
    if not generation:
        st.markdown("⏳ Đang xử lý...")
        return

    status = generation.get("status")
    if status in ("pending", "generating"):
        st.info("🎨 AI đang tạo ảnh của bạn..." if status == "generating" else "⏳ Đang chờ...")
    elif status == "failed":
        st.error(f"❌ Lỗi: {generation.get('errorMessage') or 'Lỗi không xác định'}")
    elif status == "completed":
        for url in generation.get("resultUrls") or []:
            try:
                st.image(client.download_file(url), use_container_width=True)
            except requests.RequestException as e:
                st.warning(f"⚠️ Không thể tải ảnh: {e}")
            st.markdown(f"🔗 [Mở ảnh gốc]({url})")
        if generation.get("generationTime"):
            st.caption(f"⏱️ {generation['generationTime'] / 1000:.1f}s · {generation.get('model')}")


# ==========================
# Cấu hình
# ==========================
st.set_page_config(page_title="Image Chat", page_icon="🎨", layout="wide")

st.title("🎨 Image Chat")
st.caption("Tạo và chỉnh sửa ảnh với nhiều AI provider 🖼️")

# ==========================
# Sidebar
# ==========================
with st.sidebar:
    st.header("⚙️ Cài đặt")

    user_id = st.text_input(
        "👤 User ID",
        value=st.session_state.get("user_id", "GUEST"),
        help="Mỗi user có lịch sử chat riêng",
    )
    if user_id != st.session_state.get("user_id"):
        teardown_polling()
        st.session_state.pop("chat_id", None)
        st.session_state.pop("conversation", None)
    st.session_state["user_id"] = user_id

    client = get_client(user_id)
    poller = get_poller(client)

    try:
        providers = [p for p in client.get_providers() if p.get("enabled")]
    except (ApiError, requests.RequestException) as e:
        st.error(f"❌ Không kết nối được backend: {e}")
        st.stop()

    if not providers:
        st.warning("⚠️ Chưa có provider nào được bật")
        st.stop()

    provider = st.selectbox(
        "🧩 Provider", providers, format_func=lambda p: p["name"], key="provider_select"
    )
    models = [m for m in provider["models"] if m.get("enabledByDefault", True)]
    model = st.selectbox(
        "🤖 Model",
        models,
        format_func=lambda m: m["name"] + (" ✏️" if m.get("supportsImageEdit") else ""),
        key="model_select",
    )

    with st.expander("🔑 Provider settings"):
        current = client.get_provider_settings(provider["id"])
        values: Dict[str, Any] = {}
        for item in current["settings"]:
            value = item.get("value")
            if value is None:
                value = item.get("defaultValue")
            label = item["key"] + (" *" if item["required"] else "")
            if item["kind"] == "boolean":
                values[item["key"]] = st.checkbox(label, value=bool(value))
            elif item["kind"] == "secret":
                values[item["key"]] = st.text_input(label, value=value or "", type="password")
            else:
                values[item["key"]] = st.text_input(label, value="" if value is None else str(value))
        if st.button("💾 Lưu", use_container_width=True):
            try:
                client.update_provider_settings(provider["id"], values)
                st.success("✅ Đã lưu")
            except ApiError as e:
                st.error(f"❌ {e.message}")

    st.markdown("---")

    if st.button("➕ Chat mới", use_container_width=True):
        chat_id = client.create_chat("New chat", provider["id"], model["id"])
        open_chat(client, chat_id)
        st.rerun()

    for chat in client.get_chats():
        col1, col2 = st.columns([4, 1])
        with col1:
            if st.button(chat["title"], key=f"open_{chat['id']}", use_container_width=True):
                open_chat(client, chat["id"])
                st.rerun()
        with col2:
            if st.button("🗑️", key=f"delete_{chat['id']}"):
                client.delete_chat(chat["id"])
                if st.session_state.get("chat_id") == chat["id"]:
                    teardown_polling()
                    st.session_state.pop("chat_id", None)
                    st.session_state.pop("conversation", None)
                st.rerun()

    st.markdown("---")
    st.write("🔗 Backend:", BACKEND_URL)

# ==========================
# Hiển thị lịch sử chat
# ==========================
conversation: Optional[Conversation] = st.session_state.get("conversation")
if conversation is None:
    st.info("💬 Tạo chat mới hoặc chọn một chat ở sidebar.")
    st.stop()

for msg in conversation.messages:
    with st.chat_message(msg["role"]):
        if msg["role"] == "user":
            st.markdown(msg["content"])
            if is_temp_id(msg["id"]):
                st.caption("Đang gửi...")
        else:
            render_generation(client, msg.get("generation"))

# ==========================
# Ô nhập prompt
# ==========================
uploads = None
if model.get("supportsImageEdit"):
    uploads = st.file_uploader(
        "🖼️ Ảnh tham chiếu (không bắt buộc, mặc định dùng ảnh gần nhất)",
        type=["png", "jpg", "jpeg", "webp"],
        accept_multiple_files=True,
    )

user_prompt = st.chat_input("💭 Nhập mô tả ảnh hoặc yêu cầu chỉnh sửa...")

if user_prompt:
    optimistic = conversation.begin_submit(user_prompt, user_id)
    with st.chat_message("user"):
        st.markdown(user_prompt)
        st.caption("Đang gửi...")

    try:
        server_messages = client.send_message(
            conversation.chat_id,
            user_prompt,
            provider["id"],
            model["id"],
            images=to_base64(uploads),
        )
        conversation.commit(optimistic["id"], server_messages)
    except (ApiError, requests.RequestException) as e:
        conversation.rollback(optimistic["id"])
        st.session_state["last_error"] = str(e)
    st.rerun()

if st.session_state.get("last_error"):
    st.error(f"❌ Lỗi: {st.session_state.pop('last_error')}")

# Poll các generation chưa xong, vẽ lại trang cho tới khi xong hết
sync_polling(poller, conversation)
if conversation.in_flight_generation_ids():
    time.sleep(min(settings.POLL_INTERVAL, 1.0))
    st.rerun()
