import logging
import os
import time
from pathlib import Path
from threading import Lock

import streamlit as st
import streamlit.components.v1 as components

st.set_page_config(page_title="AI Interview Monitor", layout="wide")

try:
    import av
    import cv2
    from streamlit_webrtc import WebRtcMode, webrtc_streamer
except Exception as e:
    st.title("AI Interview Monitor")
    st.error("Dependency import failed. Please check the build logs.")
    st.code(str(e))
    st.info("Try these pins in requirements: opencv-python-headless, streamlit-webrtc and av on Python 3.10+.")
    st.stop()

from detectors.focus_guard import GuardPolicy
from detectors.frame_sampler import OpenCVCamera, StreamCamera
from logic import CAMERA_LOOK_AWAY, TAB_SWITCH, MonitorState, Thresholds
from monitor import InterviewMonitor
from page_events import BridgeInbox
from termination import TerminationNotifier
from violation_log import ViolationLog

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

API_URL = os.environ.get("INTERVIEW_API_URL", "")
API_TOKEN = os.environ.get("INTERVIEW_API_TOKEN", "")
SESSION_ID = os.environ.get("INTERVIEW_SESSION_ID", "")
LOG_PATH = os.environ.get("MONITOR_LOG_PATH", "logs/violations.csv")
CAMERA_MODE = os.environ.get("MONITOR_CAMERA", "webrtc")

WARNING_TEXT = {
    TAB_SWITCH: (
        "Tab Switching Detected",
        "You switched tabs or left the interview window. This is not allowed during the interview.",
    ),
    CAMERA_LOOK_AWAY: (
        "Looking Away from Camera",
        "You looked away from the camera for an extended period. Please keep your face in view.",
    ),
}

st.title("AI Interview Monitor")
st.caption("Webcam -> frame sampler -> presence heuristic -> grace timers -> warnings | "
           "page focus, keyboard, pointer -> guard -> warnings")

st.sidebar.header("Policy (applies to the next session)")
max_warnings = st.sidebar.number_input("Warnings before termination", 1, 10, 3, 1)
calibration = st.sidebar.number_input("Calibration period", 0.0, 30.0, 5.0, 1.0)
no_face_grace = st.sidebar.number_input("No-face grace", 1.0, 60.0, 5.0, 1.0)
no_eyes_grace = st.sidebar.number_input("Eyes-not-visible grace", 1.0, 60.0, 7.0, 1.0)
not_looking_grace = st.sidebar.number_input("Looking-away grace", 1.0, 120.0, 10.0, 1.0)
long_away = st.sidebar.number_input("Continuous look-away warning", 10.0, 600.0, 60.0, 10.0)
extended_shortcuts = st.sidebar.checkbox("Block extended shortcuts", value=True)

st.sidebar.markdown("---")
st.sidebar.info("Privacy: frames are analysed in memory only. Show 'AI Monitoring Active'.")

focus_bridge = components.declare_component(
    "focus_bridge", path=str(Path(__file__).parent / "components" / "focus_bridge")
)
log = ViolationLog(LOG_PATH)
notifier = TerminationNotifier(API_URL, API_TOKEN)


def new_session():
    runtime = {
        "lock": Lock(),
        "pending": [],
        "terminated": False,
        "notified": False,
        "inbox": BridgeInbox(),
    }

    def on_warning(kind, count):
        with runtime["lock"]:
            runtime["pending"].append((kind, count))

    def on_violation(event, count):
        log.append(event.type, count, event.detail)

    def on_terminated():
        with runtime["lock"]:
            runtime["terminated"] = True

    thresholds = Thresholds(
        max_warnings=int(max_warnings),
        calibration=calibration,
        no_face_grace=no_face_grace,
        no_eyes_grace=no_eyes_grace,
        not_looking_grace=not_looking_grace,
        continuous_look_away=long_away,
    )
    camera = OpenCVCamera() if CAMERA_MODE == "local" else StreamCamera()
    monitor = InterviewMonitor(
        on_warning,
        on_terminated,
        thresholds=thresholds,
        guard_policy=GuardPolicy(block_extended_shortcuts=extended_shortcuts),
        camera=camera,
        on_violation=on_violation,
    )
    st.session_state["monitor"] = monitor
    st.session_state["runtime"] = runtime
    st.session_state["interview_active"] = False


if "monitor" not in st.session_state:
    new_session()

monitor = st.session_state["monitor"]
runtime = st.session_state["runtime"]

colA, colB = st.columns([2, 1])
status_box = colB.empty()
detect_box = colB.empty()
notice_box = colB.empty()
logs_box = colB.empty()

start_col, stop_col, reset_col = colA.columns(3)
if start_col.button("Start interview", disabled=monitor.state is MonitorState.TERMINATED):
    st.session_state["interview_active"] = True
    monitor.start_camera_monitoring()
if stop_col.button("End interview"):
    st.session_state["interview_active"] = False
    monitor.stop_camera_monitoring()
if reset_col.button("New session"):
    monitor.stop_camera_monitoring()
    new_session()
    st.rerun()

inbox = runtime["inbox"]
value = focus_bridge(shortcuts=[s.as_dict() for s in monitor.guard.p.shortcuts()], ack=inbox.ack,
                     key="focus-bridge", default=None)
for raw in inbox.take(value):
    try:
        monitor.dispatch(raw)
    except ValueError as e:
        logger.warning("Dropping malformed page event: %s", e)


def draw_overlay(img):
    snap = monitor.snapshot()
    d = snap.detection_status
    color = (0, 200, 0) if d.looking_at_camera else (0, 215, 255) if d.face_detected else (0, 0, 255)
    cv2.putText(img, f"Face: {d.face_detected} | Eyes: {d.eyes_detected} | Looking: {d.looking_at_camera}",
                (10, 28), cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2)
    cv2.putText(img, f"Warnings {snap.warning_count}/{snap.max_warnings} | {snap.reason} {snap.seconds:.1f}s",
                (10, 56), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 2)
    return img


def video_frame_callback(frame: av.VideoFrame) -> av.VideoFrame:
    img = frame.to_ndarray(format="bgr24")
    monitor.video_sink.push(img)
    try:
        out = draw_overlay(img.copy())
    except Exception as e:
        out = img.copy()
        cv2.putText(out, "Overlay error", (10, 28), cv2.FONT_HERSHEY_SIMPLEX, 0.75, (0, 0, 255), 2)
        cv2.putText(out, str(e)[:90], (10, 56), cv2.FONT_HERSHEY_SIMPLEX, 0.55, (0, 0, 255), 1)
    return av.VideoFrame.from_ndarray(out, format="bgr24")


playing = False
frame_box = None
if CAMERA_MODE == "local":
    frame_box = colA.empty()
else:
    webrtc_ctx = webrtc_streamer(
        key="interview-monitor",
        mode=WebRtcMode.SENDRECV,
        desired_playing_state=st.session_state["interview_active"] and monitor.state is not MonitorState.TERMINATED,
        rtc_configuration={
            "iceServers": [
                {"urls": ["stun:stun.l.google.com:19302"]},
                {"urls": ["stun:stun1.l.google.com:19302"]},
            ]
        },
        media_stream_constraints={
            "video": {"facingMode": "user", "width": {"ideal": 640}, "height": {"ideal": 480}},
            "audio": False,
        },
        video_frame_callback=video_frame_callback,
        async_processing=True,
    )
    playing = webrtc_ctx.state.playing


def render():
    snap = monitor.snapshot()
    with runtime["lock"]:
        pending, runtime["pending"] = runtime["pending"], []
        terminated = runtime["terminated"]

    for kind, count in pending:
        title, text = WARNING_TEXT[kind]
        if count >= snap.max_warnings:
            st.toast(f"Final warning! {title}. The interview will be terminated.")
        else:
            st.toast(f"Warning {count}/{snap.max_warnings}: {title}. {text}")

    if terminated:
        status_box.error(f"Interview terminated after {snap.warning_count} warnings.")
    elif not snap.is_monitoring:
        status_box.info("Monitoring inactive. Press 'Start interview'.")
    elif snap.state is MonitorState.WARNING:
        remaining = snap.max_warnings - snap.warning_count
        status_box.warning(f"{snap.warning_count}/{snap.max_warnings} warnings, {remaining} remaining before termination")
    else:
        status_box.success("AI Monitoring Active")

    d = snap.detection_status
    detect_box.markdown(
        f"Face: {'yes' if d.face_detected else 'no'} | Eyes: {'yes' if d.eyes_detected else 'no'} | "
        f"Looking: {'yes' if d.looking_at_camera else 'no'}"
        + (" | calibrating" if snap.calibrating else "")
    )

    if snap.is_monitoring and (not snap.camera_available or snap.detection_stalled):
        notice_box.warning("Camera is not available. Tab, keyboard and pointer monitoring remain active.")
    else:
        notice_box.empty()

    logs_box.markdown("### Recent Logs")
    logs_box.code("\n".join(log.recent()) if log.recent() else "No logs yet")
    return terminated


def handle_termination():
    monitor.stop_camera_monitoring()
    st.session_state["interview_active"] = False
    with runtime["lock"]:
        if runtime["notified"]:
            return
        runtime["notified"] = True
    notifier.notify(SESSION_ID, monitor.warning_count)


if monitor.is_monitoring and (playing or CAMERA_MODE == "local"):
    while monitor.is_monitoring:
        if frame_box is not None:
            latest = monitor.video_sink.latest()
            if latest is not None:
                frame_box.image(draw_overlay(latest.copy()), channels="BGR")
        if render():
            handle_termination()
            render()
            break
        time.sleep(0.5)
else:
    if render():
        handle_termination()
