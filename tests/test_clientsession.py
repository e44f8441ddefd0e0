import base64
import json
import random
from datetime import datetime
from types import SimpleNamespace

import pytest

from remotesupport.clientsession import (
    ClientSession,
    InvalidMessageError,
    Services,
    UnknownMessageTypeError,
)
from remotesupport.database import Database
from remotesupport.deviceproxy import DeviceProxy
from remotesupport.filerouter import FileRouter
from remotesupport.protocol import FrameDecoder, pack_message
from remotesupport.relay import MessageRouter
from remotesupport.rtmpmanager import RTMPManager
from remotesupport.userdao import UserDAO
from remotesupport.workorderdao import WorkOrderDAO
from remotesupport.workordermanager import TicketNotFoundError, WorkOrderManager

FIXED = datetime(2024, 1, 2, 3, 4, 5)
PASSWORD = "password"


class FakeDeviceDAO:
    def get_all_devices(self):
        return [
            SimpleNamespace(device_id="DEV_A", name="Pump", type="PLC",
                            location="Hall", online_status="online"),
            SimpleNamespace(device_id="DEV_B", name="Fan", type="Motor",
                            location="Roof", online_status="offline"),
        ]

    def get_device_realtime(self, device_id):
        if device_id == "DEV_A":
            return {"pressure": 90.0, "temperature": 55.0, "status": "normal"}
        return {}


@pytest.fixture
def env(tmp_path):
    db = Database()
    db.initialize(tmp_path)
    work_dao = WorkOrderDAO(db)
    manager = WorkOrderManager(work_dao, clock=lambda: FIXED)
    services = Services(
        work_orders=manager,
        message_router=MessageRouter(),
        device_proxy=DeviceProxy(db, rng=random.Random(1), clock=lambda: FIXED),
        file_router=FileRouter(tmp_path / "uploads"),
        rtmp_manager=RTMPManager(manager),
        user_dao=UserDAO(db),
        device_dao=FakeDeviceDAO(),
    )
    yield SimpleNamespace(db=db, dao=work_dao, manager=manager, services=services,
                          tmp=tmp_path)
    db.close()


def make_session(env, ip="10.0.0.1", port=5000):
    out = []
    session = ClientSession(out.append, ip, port, env.services, clock=lambda: FIXED)
    return session, out


def replies(out):
    decoder = FrameDecoder()
    messages = []
    for chunk in out:
        messages.extend(decoder.feed(chunk))
    return [json.loads(m) for m in messages]


def request(kind, data=None):
    return json.dumps({"type": kind, "data": data or {}}).encode("utf-8")


def open_ticket(env, *sessions):
    creator = sessions[0]
    creator.handle_message(request("create_ticket", {"username": "alice",
                                                     "device_ids": ["D1", "D2"]}))
    ticket_id = next(iter(env.manager._tickets))
    for s in sessions:
        s.handle_message(request("join_ticket", {"ticket_id": ticket_id}))
    return ticket_id


def test_register_then_login(env):
    session, out = make_session(env)
    session.handle_message(request("register", {"username": "alice", "password": PASSWORD,
                                                "user_type": "client"}))
    session.handle_message(request("login", {"username": "alice", "password": PASSWORD}))
    first, second = replies(out)
    assert first == {"type": "register_result",
                     "data": {"success": True, "message": "Registration successful"}}
    assert second == {"type": "login_result",
                      "data": {"success": True, "message": "Login successful"}}


def test_register_duplicate_fails(env):
    session, out = make_session(env)
    payload = {"username": "bob", "password": PASSWORD, "user_type": "expert"}
    session.handle_message(request("register", payload))
    session.handle_message(request("register", payload))
    last = replies(out)[-1]
    assert last["data"] == {"success": False,
                            "message": "Registration failed. Username may already exist."}


@pytest.mark.parametrize(
    "credentials, expected",
    [
        ({"username": "", "password": PASSWORD}, "Username or password cannot be empty"),
        ({"username": "nobody", "password": PASSWORD}, "User does not exist"),
        ({"username": "carol", "password": "secret"}, "Incorrect password"),
    ],
)
def test_login_failures(env, credentials, expected):
    session, out = make_session(env)
    session.handle_message(request("register", {"username": "carol", "password": PASSWORD,
                                                "user_type": "client"}))
    session.handle_message(request("login", credentials))
    last = replies(out)[-1]
    assert last["type"] == "login_result"
    assert last["data"] == {"success": False, "message": expected}


def test_create_ticket_replies_and_stores(env):
    session, out = make_session(env)
    session.handle_message(request("create_ticket", {"username": "alice",
                                                     "device_ids": ["D1", "D2"]}))
    (reply,) = replies(out)
    ticket_id = reply["data"]["ticket_id"]
    assert reply["type"] == "ticket_created"
    assert ticket_id == "T" + FIXED.strftime("%Y%m%d%H%M%S")
    record = env.dao.get_work_order(ticket_id)
    assert record.client_ip == "10.0.0.1"
    assert record.client_port == 5000
    assert record.device_ids == ["D1", "D2"]


def test_join_ticket_sets_current_and_notifies(env):
    session, out = make_session(env)
    ready = []
    session.ready_for_media.append(ready.append)
    ticket_id = open_ticket(env, session)
    assert session.current_ticket is env.manager.get_work_order(ticket_id)
    assert replies(out)[-1] == {"type": "joined_ticket", "data": {"ticket_id": ticket_id}}
    assert ready == [ticket_id]


def test_join_unknown_ticket(env):
    session, out = make_session(env)
    with pytest.raises(TicketNotFoundError):
        session.handle_message(request("join_ticket", {"ticket_id": "missing"}))
    assert session.feed(pack_message(request("join_ticket", {"ticket_id": "missing"}))) == []
    assert out == []


def test_invalid_and_unknown_messages(env):
    session, _ = make_session(env)
    with pytest.raises(InvalidMessageError):
        session.handle_message(b"{not json")
    with pytest.raises(UnknownMessageTypeError):
        session.handle_message(request("dance"))


def test_feed_handles_split_frames(env):
    session, out = make_session(env)
    frame = pack_message(request("login", {"username": "", "password": ""}))
    assert session.feed(frame[:3]) == []
    assert session.feed(frame[3:] + frame) == ["login", "login"]
    assert len(replies(out)) == 2


def test_text_message_routed_to_peer(env):
    a, _ = make_session(env)
    b, b_out = make_session(env, ip="10.0.0.2")
    open_ticket(env, a, b)
    b_out.clear()
    raw = request("text_msg", {"text": "hi"})
    a.handle_message(raw)
    decoder = FrameDecoder()
    received = [m for chunk in b_out for m in decoder.feed(chunk)]
    assert received == [raw]


def test_accept_and_complete_ticket(env):
    client, _ = make_session(env)
    expert, _ = make_session(env, ip="10.0.0.9", port=6000)
    ticket_id = open_ticket(env, client)
    expert.handle_message(request("accept_ticket", {"ticket_id": ticket_id,
                                                    "expert_username": "eve"}))
    record = env.dao.get_work_order(ticket_id)
    assert record.status == "in_progress"
    assert record.expert_ip == "10.0.0.9"
    assert record.expert_port == 6000
    expert.handle_message(request("complete_ticket", {"ticket_id": ticket_id,
                                                      "description": "leak",
                                                      "solution": "seal"}))
    record = env.dao.get_work_order(ticket_id)
    assert record.status == "completed"
    assert record.feedback_solution == "seal"
    assert env.manager.get_work_order(ticket_id) is None


def test_rtmp_start_and_stop(env):
    a, a_out = make_session(env)
    b, b_out = make_session(env, ip="10.0.0.2")
    ticket_id = open_ticket(env, a, b)
    a_out.clear()
    b_out.clear()
    a.handle_message(request("rtmp_stream_start", {"ticket_id": ticket_id,
                                                   "stream_name": "cam"}))
    started = replies(a_out)[-1]
    url = f"rtmp://localhost/live/{ticket_id}_cam"
    assert started["type"] == "rtmp_stream_started"
    assert started["data"]["stream_url"] == url
    assert a.is_streaming
    assert env.services.rtmp_manager.get_stream_url(ticket_id) == url
    assert replies(b_out)[-1]["type"] == "rtmp_stream_available"

    a.handle_message(request("rtmp_stream_stop", {"ticket_id": ticket_id}))
    assert replies(a_out)[-1]["type"] == "rtmp_stream_stopped"
    assert not a.is_streaming
    assert not env.services.rtmp_manager.is_ticket_streaming(ticket_id)


def test_rtmp_start_without_ticket_is_ignored(env):
    session, out = make_session(env)
    session.handle_message(request("rtmp_stream_start", {"ticket_id": "T1",
                                                         "stream_name": "cam"}))
    assert out == []
    assert not session.is_streaming


def test_rtmp_data_relayed(env):
    a, _ = make_session(env)
    b, b_out = make_session(env, ip="10.0.0.2")
    ticket_id = open_ticket(env, a, b)
    a.handle_message(request("rtmp_stream_start", {"ticket_id": ticket_id,
                                                   "stream_name": "cam"}))
    b_out.clear()
    payload = b"\x00\x01video"
    a.handle_message(request("rtmp_stream_data", {
        "ticket_id": ticket_id,
        "stream_data": base64.b64encode(payload).decode("ascii"),
    }))
    (message,) = replies(b_out)
    assert message["type"] == "rtmp_stream_data"
    assert base64.b64decode(message["data"]["stream_data"]) == payload
    assert message["data"]["data_size"] == len(payload)


def test_disconnect_stops_stream_and_writes(env):
    a, a_out = make_session(env)
    b, _ = make_session(env, ip="10.0.0.2")
    ticket_id = open_ticket(env, a, b)
    a.handle_message(request("rtmp_stream_start", {"ticket_id": ticket_id,
                                                   "stream_name": "cam"}))
    gone = []
    a.disconnected.append(gone.append)
    a.on_disconnected()
    assert gone == [a]
    assert not env.services.rtmp_manager.is_ticket_streaming(ticket_id)
    a_out.clear()
    assert a.send_message(b"late") is False
    assert a_out == []


def test_device_list(env):
    session, out = make_session(env)
    session.handle_message(request("get_device_list"))
    (reply,) = replies(out)
    devices = reply["data"]["devices"]
    assert reply["type"] == "device_list"
    assert [d["device_id"] for d in devices] == ["DEV_A", "DEV_B"]
    assert devices[0]["pressure"] == 90.0
    assert devices[0]["type"] == "PLC"
    assert "pressure" not in devices[1]


def test_device_control_listener(env):
    session, _ = make_session(env)
    seen = []
    session.device_control_request.append(lambda s, d: seen.append((s, d)))
    session.handle_message(request("deviceControl", {"device_id": "DEV_A"}))
    assert seen == [(session, {"device_id": "DEV_A"})]


def test_request_device_data(env):
    session, out = make_session(env)
    session.handle_message(request("request_device_data", {"device_id": "SIM_PLC_1001"}))
    (reply,) = replies(out)
    assert reply["type"] == "device_data"
    assert reply["data"]["logs"] == ["System started", "No errors detected"]


def test_file_upload_through_session(env):
    a, a_out = make_session(env)
    b, b_out = make_session(env, ip="10.0.0.2")
    ticket_id = open_ticket(env, a, b)
    a_out.clear()
    b_out.clear()
    a.handle_message(request("file_upload_start", {"file_name": "a.txt", "file_size": 3,
                                                   "ticket_id": ticket_id}))
    started = replies(a_out)[-1]
    assert started["type"] == "upload_started"
    file_id = started["data"]["file_id"]
    a.handle_message(request("file_upload_chunk", {
        "file_id": file_id,
        "chunk_data": base64.b64encode(b"abc").decode("ascii"),
        "is_last": True,
    }))
    assert (env.tmp / "uploads" / ticket_id / "a.txt").read_bytes() == b"abc"
    notice = replies(b_out)[-1]
    assert notice["type"] == "file_uploaded"
    assert notice["data"]["file_id"] == file_id