"""
CLI to run live sensing for a fixed time -> JSON.
"""
from __future__ import annotations
import argparse, asyncio, json, logging, os
from sensing.config import Settings
from sensing.errors import StartError
from sensing.live import LiveAnalyzer


async def run(settings: Settings, seconds: float, video: bool, audio: bool) -> dict:
    analyzer = LiveAnalyzer(settings)
    results = {"video": [], "audio": []}

    def on_video(r):
        results["video"].append(r.model_dump())
        print(json.dumps({"video": r.model_dump()}, ensure_ascii=False))

    def on_audio(r):
        results["audio"].append(r.model_dump())
        print(json.dumps({"audio": r.model_dump()}, ensure_ascii=False))

    try:
        if video:
            await analyzer.start_video_analysis(on_video)
        if audio:
            await analyzer.start_audio_analysis(on_audio)
        await asyncio.sleep(seconds)
    finally:
        analyzer.stop()

    results["metrics"] = {
        "video": analyzer.get_performance_metrics("video").model_dump(),
        "audio": analyzer.get_performance_metrics("audio").model_dump(),
    }
    return results

def main():
    p = argparse.ArgumentParser()
    p.add_argument("--seconds", type=float, default=10.0, help="How long to sample")
    p.add_argument("--no-video", action="store_true", help="Skip camera analysis")
    p.add_argument("--no-audio", action="store_true", help="Skip microphone analysis")
    p.add_argument("--out", default=None, help="Optional path to output JSON")
    args = p.parse_args()

    settings = Settings()
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    try:
        result = asyncio.run(run(settings, args.seconds, not args.no_video, not args.no_audio))
    except StartError as e:
        print(f"❌ Could not start: {e}")
        raise SystemExit(1)
    print(json.dumps(result["metrics"], indent=2))

    if args.out:
        os.makedirs(os.path.dirname(args.out) or ".", exist_ok=True)
        with open(args.out, "w", encoding="utf-8") as f:
            json.dump(result, f, indent=2, ensure_ascii=False)
        print(f"✅ Results written to {args.out}")

if __name__ == "__main__":
    main()
