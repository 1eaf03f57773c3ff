from sensing.config import Settings


def test_settings():
    s = Settings()
    assert s.AUDIO_SAMPLE_RATE >= 8000
    assert s.VIDEO_INTERVAL_MS > 0 and s.AUDIO_INTERVAL_MS > 0
    # override via env-like behavior (construct new instance)
    s2 = Settings(AUDIO_SAMPLE_RATE=22050)
    assert s2.AUDIO_SAMPLE_RATE == 22050


def test_settings_device_normalized():
    assert Settings(DEVICE="CUDA").DEVICE == "gpu"
    assert Settings(DEVICE="opencl  # use the iGPU").DEVICE == "gpu"
    assert Settings(DEVICE="cpu").DEVICE == "cpu"
    assert Settings(DEVICE="tpu").DEVICE == "cpu"


def test_settings_fft_size_power_of_two():
    assert Settings(FFT_SIZE=1024).FFT_SIZE == 1024
    assert Settings(FFT_SIZE=1000).FFT_SIZE == 2048
    assert Settings(FFT_SIZE=16).FFT_SIZE == 2048
    assert Settings(FFT_SIZE=65536).FFT_SIZE == 2048


def test_settings_intervals():
    s = Settings(VIDEO_INTERVAL_MS=500, AUDIO_INTERVAL_MS=300)
    assert s.video_interval_s == 0.5
    assert s.audio_interval_s == 0.3
    assert Settings(VIDEO_INTERVAL_MS=0).video_interval_s == 0.001
