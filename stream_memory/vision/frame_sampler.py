import base64

import cv2


class FrameSampler:
    """Yields (jpeg_base64, second) every `interval_seconds` of a video source."""

    def __init__(self, video_path: str, interval_seconds: float, jpeg_quality: int = 85):
        self.video_path = video_path
        self.cap = cv2.VideoCapture(video_path)

        if not self.cap.isOpened():
            raise RuntimeError(f"Failed to open video: {video_path}")

        self.original_fps = self.cap.get(cv2.CAP_PROP_FPS)

        if not self.original_fps or self.original_fps <= 0:
            raise RuntimeError(
                f"Invalid FPS detected for video: {video_path}"
            )

        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be greater than 0")

        self.interval_seconds = interval_seconds
        self.jpeg_quality = jpeg_quality
        self.frame_interval = max(
            int(round(self.original_fps * interval_seconds)), 1
        )
        self.frame_count = 0

    def __iter__(self):
        return self

    def __next__(self):
        while True:
            ret, frame = self.cap.read()

            if not ret:
                self._release()
                raise StopIteration

            self.frame_count += 1

            # First frame is always sampled so frame 1 starts the memory cycle
            if (self.frame_count - 1) % self.frame_interval == 0:
                timestamp_sec = (
                    self.cap.get(cv2.CAP_PROP_POS_MSEC) / 1000.0
                )
                ok, buffer = cv2.imencode(
                    ".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality]
                )
                if not ok:
                    continue
                return base64.b64encode(buffer).decode("utf-8"), float(timestamp_sec)

    def _release(self):
        if self.cap and self.cap.isOpened():
            self.cap.release()

    def __del__(self):
        """Ensure the video capture is always released, even on exceptions."""
        self._release()
