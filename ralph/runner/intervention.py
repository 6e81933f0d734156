"""
Operator intervention channel.

One channel is created per run and handed to the controller. It holds at
most one pending message and an interrupt flag:

- the keyboard listener thread sets the flag when Ctrl+\\ is pressed
- the controller polls the flag while consuming agent events, prompts the
  operator (prompt_and_push) and restarts the iteration
- take() hands the pending message to the next prompt, exactly once
"""

import _thread
import logging
import os
import select
import sys
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

logger = logging.getLogger(__name__)

INTERRUPT_KEY = b"\x1c"  # Ctrl+\
EXIT_KEY = b"\x03"  # Ctrl+C


@dataclass
class InterventionMessage:
    """Operator text waiting for the next prompt."""
    text: str
    timestamp: datetime = field(default_factory=datetime.now)

    def format(self) -> str:
        """Render as a prompt block asking the agent to acknowledge it."""
        return (
            "---\n"
            f"**Human Intervention** ({self.timestamp.strftime('%H:%M:%S')}):\n"
            f"{self.text}\n"
            "---\n\n"
            "Please acknowledge this feedback and incorporate it into your current work."
        )


class InterventionChannel:
    """Bounded single-slot mailbox between the operator and the controller."""

    def __init__(self, input_fn: Callable[[str], str] = input, output: Callable[[str], None] = print):
        self._lock = threading.Lock()
        self._pending: InterventionMessage | None = None
        self.interrupt = threading.Event()
        self.input_fn = input_fn
        self.output = output
        self.listener: "KeyboardListener | None" = None

    def push(self, text: str) -> InterventionMessage:
        """Store a message, replacing any message not yet consumed."""
        message = InterventionMessage(text=text.strip())
        with self._lock:
            if self._pending is not None:
                logger.warning("Replacing unconsumed intervention message")
            self._pending = message
        return message

    def take(self) -> InterventionMessage | None:
        """Consume the pending message, if any. Never blocks."""
        with self._lock:
            message, self._pending = self._pending, None
        return message

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def raise_interrupt(self):
        self.interrupt.set()

    def interrupt_requested(self) -> bool:
        return self.interrupt.is_set()

    def clear_interrupt(self):
        self.interrupt.clear()

    def _suspend_listener(self):
        if self.listener is not None:
            self.listener.pause()

    def _resume_listener(self):
        if self.listener is not None:
            self.listener.resume()

    def prompt_and_push(self) -> InterventionMessage | None:
        """Block for an operator message and store it. Empty input stores nothing."""
        self._suspend_listener()
        try:
            self.output("\n" + "=" * 60)
            self.output("PAUSED - the current iteration will restart with your message")
            self.output("=" * 60)
            try:
                text = self.input_fn("Enter your message for the agent: ")
            except EOFError:
                text = ""
        finally:
            self._resume_listener()

        if not text.strip():
            self.output("No message entered, restarting iteration.")
            return None
        message = self.push(text)
        self.output("Message queued for the agent.")
        return message

    def confirm_continue(self) -> bool:
        """HITL pause between iterations. False when input is closed."""
        self._suspend_listener()
        try:
            self.input_fn("\nPress Enter to continue or Ctrl+C to stop...")
            return True
        except EOFError:
            return False
        finally:
            self._resume_listener()


class KeyboardListener:
    """
    Background reader for the interrupt key.

    Puts the terminal in cbreak mode with signals disabled, so Ctrl+\\ arrives
    as a byte instead of SIGQUIT; Ctrl+C is forwarded to the main thread as
    KeyboardInterrupt. Does nothing when stdin is not a terminal.
    """

    def __init__(self, channel: InterventionChannel, stream=None):
        self.channel = channel
        self.stream = stream if stream is not None else sys.stdin
        self._stop = threading.Event()
        self._paused = threading.Event()
        self._idle = threading.Event()
        self._term_lock = threading.Lock()
        self._saved_attrs = None
        self._thread: threading.Thread | None = None
        channel.listener = self

    @property
    def enabled(self) -> bool:
        try:
            import termios  # noqa: F401
        except ImportError:
            return False
        try:
            return self.stream.isatty()
        except (AttributeError, ValueError):
            return False

    def start(self):
        if not self.enabled:
            logger.debug("stdin is not a terminal, keyboard interrupts disabled")
            return
        self._thread = threading.Thread(target=self._run, name="ralph-keyboard", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1)
        self._restore()

    def pause(self):
        """Hand the terminal back (cooked mode) for a blocking prompt."""
        if self._thread is None:
            return
        self._idle.clear()
        self._paused.set()
        self._idle.wait(timeout=1)

    def resume(self):
        self._paused.clear()

    def _enter_cbreak(self, fd: int):
        import termios
        import tty

        with self._term_lock:
            if self._saved_attrs is not None:
                return
            self._saved_attrs = termios.tcgetattr(fd)
            tty.setcbreak(fd)
            attrs = termios.tcgetattr(fd)
            attrs[3] &= ~termios.ISIG
            termios.tcsetattr(fd, termios.TCSANOW, attrs)

    def _restore(self):
        with self._term_lock:
            if self._saved_attrs is None:
                return
            import termios
            try:
                termios.tcsetattr(self.stream.fileno(), termios.TCSADRAIN, self._saved_attrs)
            except (termios.error, ValueError) as e:
                logger.warning(f"Failed to restore terminal mode: {e}")
            self._saved_attrs = None

    def _run(self):
        fd = self.stream.fileno()
        while not self._stop.is_set():
            if self._paused.is_set():
                self._restore()
                self._idle.set()
                time.sleep(0.05)
                continue

            self._enter_cbreak(fd)
            ready, _, _ = select.select([fd], [], [], 0.1)
            if not ready:
                continue
            key = os.read(fd, 1)
            if key == INTERRUPT_KEY:
                logger.debug("Interrupt key pressed")
                self.channel.raise_interrupt()
            elif key == EXIT_KEY:
                _thread.interrupt_main()
        self._restore()
