"""
FFmpeg wrapper used by the render pipeline.
Every command is built with ffmpeg-python, which passes an argument list to
the process (no shell), and failures are turned into RenderErrors.
"""

import logging
import math
import os
import shutil
import subprocess

import ffmpeg

from config import (
    AUDIO_BITRATE,
    AUDIO_CODEC,
    AUDIO_SAMPLE_RATE,
    ENCODER_CHECK_TIMEOUT,
    FFMPEG_PATH,
    FFPROBE_PATH,
    FRAME_RATE,
    PIXEL_FORMAT,
    VIDEO_CODEC,
    VIDEO_HEIGHT,
    VIDEO_WIDTH,
    ZOOM_CEILING,
    ZOOM_FRAMES,
    ZOOM_STEP,
)
from errors import EncodingError, MissingDependencyError, ProbeError


def _last_line(stderr) -> str:
    """Extract the most meaningful line from ffmpeg's diagnostics."""
    if not stderr:
        return "no diagnostic output"
    if isinstance(stderr, bytes):
        stderr = stderr.decode("utf8", errors="replace")
    lines = [line.strip() for line in stderr.strip().splitlines() if line.strip()]
    return lines[-1] if lines else "no diagnostic output"


def check_encoder_available(ffmpeg_path: str = FFMPEG_PATH) -> str:
    """Return the first line of `ffmpeg -version`, or raise MissingDependencyError."""
    if shutil.which(ffmpeg_path) is None:
        raise MissingDependencyError(f"FFmpeg is not installed on the server ({ffmpeg_path} not found)")

    try:
        result = subprocess.run(
            [ffmpeg_path, "-version"],
            capture_output=True,
            text=True,
            timeout=ENCODER_CHECK_TIMEOUT,
            check=True,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
        raise MissingDependencyError(f"FFmpeg is not usable: {e}")

    return result.stdout.splitlines()[0] if result.stdout else ffmpeg_path


class FFmpegEncoder:
    """Builds and runs the ffmpeg/ffprobe invocations of the render pipeline."""

    def __init__(
        self,
        ffmpeg_path: str = FFMPEG_PATH,
        ffprobe_path: str = FFPROBE_PATH,
        width: int = VIDEO_WIDTH,
        height: int = VIDEO_HEIGHT,
        fps: int = FRAME_RATE,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.width = width
        self.height = height
        self.fps = fps

    def probe_duration(self, media_path: str) -> float:
        """Duration of a media file in seconds. Raises ProbeError."""
        name = os.path.basename(media_path)
        try:
            info = ffmpeg.probe(media_path, cmd=self.ffprobe_path)
        except ffmpeg.Error as e:
            raise ProbeError(f"ffprobe failed for {name}: {_last_line(e.stderr)}") from e
        except OSError as e:
            raise ProbeError(f"Could not run {self.ffprobe_path} for {name}: {e}") from e

        try:
            duration = float(info["format"]["duration"])
        except (KeyError, TypeError, ValueError) as e:
            raise ProbeError(f"No duration reported for {name}") from e

        if not math.isfinite(duration) or duration <= 0:
            raise ProbeError(f"Unusable duration {duration} for {name}")
        return duration

    def build_segment(self, image_path: str, audio_path: str, duration: float, output_path: str):
        """
        One still image looped as video, muxed with the scene's full audio and cut to `duration`.
        The image is fitted and padded onto the vertical canvas and slowly zoomed in.
        """
        size = f"{self.width}x{self.height}"
        video = (
            ffmpeg.input(image_path, loop=1)
            .video
            .filter("scale", self.width, self.height, force_original_aspect_ratio="decrease")
            .filter("pad", self.width, self.height, "(ow-iw)/2", "(oh-ih)/2")
            .filter(
                "zoompan",
                z=f"min(zoom+{ZOOM_STEP},{ZOOM_CEILING})",
                d=ZOOM_FRAMES,
                x="iw/2-(iw/zoom/2)",
                y="ih/2-(ih/zoom/2)",
                s=size,
                fps=self.fps,
            )
        )
        audio = ffmpeg.input(audio_path).audio

        # Every segment shares codec, pixel format, size and rate so the concat step can stream-copy
        return ffmpeg.output(
            video,
            audio,
            output_path,
            t=f"{duration:.3f}",
            vcodec=VIDEO_CODEC,
            pix_fmt=PIXEL_FORMAT,
            r=self.fps,
            acodec=AUDIO_CODEC,
            audio_bitrate=AUDIO_BITRATE,
            ar=AUDIO_SAMPLE_RATE,
            shortest=None,
        ).overwrite_output()

    def build_concat(self, list_path: str, output_path: str):
        """Concat demuxer with stream copy: no re-encode."""
        return (
            ffmpeg.input(list_path, format="concat", safe=0)
            .output(output_path, c="copy")
            .overwrite_output()
        )

    def render_segment(self, image_path: str, audio_path: str, duration: float, output_path: str) -> str:
        stream = self.build_segment(image_path, audio_path, duration, output_path)
        self._run(stream, f"rendering segment {os.path.basename(output_path)}")
        return output_path

    def concat(self, list_path: str, output_path: str) -> str:
        stream = self.build_concat(list_path, output_path)
        self._run(stream, "concatenating segments")
        return output_path

    def _run(self, stream, description: str) -> None:
        logging.info(f"🎬 Running FFmpeg command: {' '.join(stream.compile(cmd=self.ffmpeg_path))}")
        try:
            stream.run(cmd=self.ffmpeg_path, capture_stdout=True, capture_stderr=True)
        except ffmpeg.Error as e:
            stderr = e.stderr.decode("utf8", errors="replace") if e.stderr else ""
            logging.error(f"❌ FFmpeg failed while {description}. Stderr:\n{stderr}")
            raise EncodingError(f"FFmpeg failed while {description}: {_last_line(stderr)}") from e
        except OSError as e:
            logging.error(f"❌ Could not start {self.ffmpeg_path} while {description}: {e}")
            raise EncodingError(f"Could not run {self.ffmpeg_path} while {description}: {e}") from e
