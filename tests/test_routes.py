from fastapi.testclient import TestClient
from api.main import app
import api.routes as routes

from sensing.errors import AlreadyRunning, DeviceNotFound, ModelUnavailable, PermissionDenied
from sensing.models import DetectorState, LiveStatus, ModalityStatus, PerformanceMetrics, SchedulerState


class FakeAnalyzer:
    """Stands in for LiveAnalyzer; `errors` maps modality -> exception raised on start."""
    def __init__(self, errors=None, stopped_during_setup=False):
        self.errors = errors or {}
        self.stopped_during_setup = stopped_during_setup
        self.running = {"video": False, "audio": False}
        self.stopped = []

    async def start_video_analysis(self, on_result):
        return self._start("video")

    async def start_audio_analysis(self, on_result):
        return self._start("audio")

    def _start(self, modality):
        if modality in self.errors:
            raise self.errors[modality]
        if self.running[modality]:
            raise AlreadyRunning(modality)
        if self.stopped_during_setup:
            return False
        self.running[modality] = True
        return True

    def stop_video_analysis(self):
        self.running["video"] = False
        self.stopped.append("video")

    def stop_audio_analysis(self):
        self.running["audio"] = False
        self.stopped.append("audio")

    def is_running(self, modality):
        return self.running[modality]

    def is_ready(self):
        return self.running["video"]

    def get_performance_metrics(self, modality):
        return PerformanceMetrics(count=3, avg_ms=12.5, min_ms=10.0, max_ms=15.0, last_ms=12.0)

    def status(self):
        def mod(m):
            state = SchedulerState.POLLING if self.running[m] else SchedulerState.IDLE
            return ModalityStatus(running=self.running[m], state=state)
        return LiveStatus(ready=self.is_ready(), detector_state=DetectorState.READY, video=mod("video"), audio=mod("audio"))


def test_health(monkeypatch):
    monkeypatch.setattr(routes, "live_analyzer", FakeAnalyzer())
    client = TestClient(app)
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "ready": False}


def test_live_start_stop(monkeypatch):
    fake = FakeAnalyzer()
    monkeypatch.setattr(routes, "live_analyzer", fake)
    client = TestClient(app)

    r = client.post("/live/video/start")
    assert r.status_code == 200
    assert r.json()["status"] == "started"
    r = client.post("/live/video/start")
    assert r.json()["status"] == "already_running"

    r = client.post("/live/audio/start")
    assert r.json()["status"] == "started"

    r = client.post("/live/video/stop")
    assert r.json()["status"] == "stopped"
    r = client.post("/live/video/stop")
    assert r.json()["status"] == "not_running"
    assert fake.stopped == ["video"]


def test_live_start_errors(monkeypatch):
    errors = {
        "video": ModelUnavailable("Landmark model unavailable: both builds failed"),
        "audio": PermissionDenied("audio", "blocked by OS"),
    }
    monkeypatch.setattr(routes, "live_analyzer", FakeAnalyzer(errors))
    client = TestClient(app)

    r = client.post("/live/video/start")
    assert r.status_code == 503
    assert "Landmark model unavailable" in r.json()["detail"]

    r = client.post("/live/audio/start")
    assert r.status_code == 403
    assert "blocked by OS" in r.json()["detail"]

    monkeypatch.setattr(routes, "live_analyzer", FakeAnalyzer({"video": DeviceNotFound("video", "no camera")}))
    assert client.post("/live/video/start").status_code == 404


def test_live_status(monkeypatch):
    monkeypatch.setattr(routes, "live_analyzer", FakeAnalyzer())
    client = TestClient(app)
    client.post("/live/audio/start")
    r = client.get("/live/status")
    assert r.status_code == 200
    body = r.json()
    assert body["audio"]["running"] is True
    assert body["audio"]["state"] == "polling"
    assert body["video"]["running"] is False
    assert body["detector_state"] == "ready"


def test_live_metrics(monkeypatch):
    monkeypatch.setattr(routes, "live_analyzer", FakeAnalyzer())
    client = TestClient(app)
    r = client.get("/live/metrics")
    assert r.status_code == 200
    body = r.json()
    assert body["video"]["count"] == 3
    assert body["audio"]["avg_ms"] == 12.5


def test_live_start_stopped_during_setup(monkeypatch):
    monkeypatch.setattr(routes, "live_analyzer", FakeAnalyzer(stopped_during_setup=True))
    client = TestClient(app)
    r = client.post("/live/audio/start")
    assert r.status_code == 200
    assert r.json()["status"] == "stopped"
    assert client.post("/live/audio/stop").json()["status"] == "not_running"


def test_capture_error_maps_to_500(monkeypatch):
    from sensing.errors import DeviceCaptureError
    monkeypatch.setattr(routes, "live_analyzer", FakeAnalyzer({"audio": DeviceCaptureError("audio", "driver hiccup")}))
    client = TestClient(app)
    r = client.post("/live/audio/start")
    assert r.status_code == 500
    assert "driver hiccup" in r.json()["detail"]
