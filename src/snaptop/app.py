"""snaptop - Textual display for the render loop."""

from queue import Empty, Queue

from rich.text import Text
from textual.app import App, ComposeResult
from textual.widgets import Footer, Static

from snaptop.formatting import DEFAULT_TOP_N
from snaptop.monitor import Frame, RenderLoop, Source
from snaptop.source import MetricSource


class FrameView(Static):
    """Shows the latest frame verbatim, without markup."""

    DEFAULT_CSS = """
    FrameView {
        height: 1fr;
        padding: 0 1;
        background: $surface;
    }
    """

    def __init__(self, **kwargs) -> None:
        """Initialize FrameView."""
        super().__init__("Sampling...", **kwargs)
        self._frame: Frame = []

    @property
    def frame(self) -> Frame:
        """The frame currently on screen."""
        return self._frame

    def show_frame(self, frame: Frame) -> None:
        """Replace the whole view with a new frame."""
        self._frame = list(frame)
        self.update(Text("\n".join(self._frame), no_wrap=True, overflow="crop"))


class SnaptopApp(App):
    """Main snaptop application."""

    TITLE = "snaptop"
    SUB_TITLE = "System Resource Monitor"

    BINDINGS = [
        ("q", "quit", "Quit"),
    ]

    def __init__(
        self,
        interval: float = 1.0,
        top_n: int = DEFAULT_TOP_N,
        source: Source | None = None,
    ) -> None:
        """Initialize the SnaptopApp."""
        super().__init__()
        self._update_queue: Queue[Frame] = Queue()
        self._render_loop = RenderLoop(
            source if source is not None else MetricSource(),
            self._update_queue.put,
            interval=interval,
            top_n=top_n,
        )

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield FrameView(id="frame")
        yield Footer()

    def on_mount(self) -> None:
        """Start the render loop when the app is mounted."""
        self._render_loop.start()
        # Poll the queue for frames produced on the loop thread
        self.set_interval(0.25, self._check_for_updates)

    def on_unmount(self) -> None:
        """Stop the render loop when the app goes away."""
        self._render_loop.stop()

    def _check_for_updates(self) -> None:
        """Show the newest queued frame, dropping any older ones."""
        frame = None
        while True:
            try:
                frame = self._update_queue.get_nowait()
            except Empty:
                break

        if frame is not None:
            self.query_one("#frame", FrameView).show_frame(frame)

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._render_loop.stop()
        self.exit()
