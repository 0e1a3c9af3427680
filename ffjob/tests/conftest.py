"""
Shared pytest fixtures for ffjob tests.

Runner tests do not need a real ffmpeg: fake_ffmpeg and fake_ffprobe write small
Python scripts to tmp_path that speak the same command line and output
protocol closely enough for the supervisor.
"""
import json
import os
import sys
import threading

import pytest

from ffjob.runner import Runner

FAKE_FFMPEG = '''#!{python}
import json
import sys
import time

CONFIG = json.loads({config!r})
argv = sys.argv[1:]

with open(CONFIG["argv_file"], "w") as f:
    json.dump(argv, f)

for line in CONFIG["stderr"]:
    sys.stderr.write(line + "\\n")
sys.stderr.flush()

sink = argv[argv.index("-progress") + 1]
payload = "".join(
    "frame=1\\nout_time_us={{}}\\nspeed={{}}\\nprogress={{}}\\n".format(*block)
    for block in CONFIG["blocks"]
)

if payload and sink == "pipe:1":
    sys.stdout.write(payload)
    sys.stdout.flush()
elif payload:
    import http.client
    import urllib.parse

    url = urllib.parse.urlsplit(sink)
    conn = http.client.HTTPConnection(url.hostname, url.port, timeout=5)
    if CONFIG["hold_open"]:
        # Send the blocks as one chunk and never finish the body
        conn.putrequest("POST", url.path)
        conn.putheader("Transfer-Encoding", "chunked")
        conn.endheaders()
        data = payload.encode()
        conn.send(b"%x\\r\\n%s\\r\\n" % (len(data), data))
        time.sleep(60)
    # An iterable body is sent with Transfer-Encoding: chunked, as ffmpeg does
    conn.request("POST", url.path, body=iter([payload.encode()]))
    conn.getresponse().read()
    conn.close()

if CONFIG["hang"]:
    time.sleep(60)
sys.exit(CONFIG["exit_code"])
'''

FAKE_FFPROBE = '''#!{python}
import sys

sys.stdout.write({stdout!r})
sys.stderr.write({stderr!r})
sys.exit({exit_code})
'''


def probe_document(duration="10.000000", video=True, audio=True):
    """Build an ffprobe JSON document with one video and one audio stream."""
    streams = []
    if video:
        streams.append({
            "index": 0,
            "codec_name": "h264",
            "codec_type": "video",
            "width": 1280,
            "height": 720,
            "duration": duration,
            "disposition": {"default": 1},
        })
    if audio:
        streams.append({
            "index": len(streams),
            "codec_name": "aac",
            "codec_type": "audio",
            "channels": 2,
            "sample_rate": "48000",
            "duration": duration,
            "tags": {"language": "eng"},
        })
    return {
        "streams": streams,
        "format": {
            "filename": "input.mp4",
            "nb_streams": len(streams),
            "format_name": "mov,mp4,m4a,3gp,3g2,mj2",
            "duration": duration,
            "probe_score": 100,
        },
    }


def _write_script(path, text):
    path.write_text(text)
    os.chmod(path, 0o755)
    return str(path)


@pytest.fixture
def fake_ffmpeg(tmp_path):
    """
    Factory writing a fake ffmpeg executable.

    The script records its argv to ``argv.json`` (see read_argv), writes its
    stderr lines, then the progress blocks to its -progress sink (stdout or
    an HTTP URL). It then optionally hangs until terminated and exits with
    exit_code. With hold_open an HTTP sink receives the blocks in a chunked
    request that is never completed.

    Returns:
        callable(blocks=(), stderr=(), exit_code=0, hang=False, hold_open=False) -> path
    """
    def make(blocks=(), stderr=(), exit_code=0, hang=False, hold_open=False):
        config = {
            "argv_file": str(tmp_path / "argv.json"),
            "blocks": [list(block) for block in blocks],
            "stderr": list(stderr),
            "exit_code": exit_code,
            "hang": hang,
            "hold_open": hold_open,
        }
        text = FAKE_FFMPEG.format(python=sys.executable, config=json.dumps(config))
        return _write_script(tmp_path / "ffmpeg", text)
    return make


@pytest.fixture
def read_argv(tmp_path):
    """Return the argv recorded by the last fake_ffmpeg run."""
    def read():
        return json.loads((tmp_path / "argv.json").read_text())
    return read


@pytest.fixture
def fake_ffprobe(tmp_path):
    """
    Factory writing a fake ffprobe executable.

    Returns:
        callable(document=None, stdout=None, stderr="", exit_code=0) -> path
    """
    def make(document=None, stdout=None, stderr="", exit_code=0):
        if stdout is None:
            stdout = json.dumps(document if document is not None else probe_document())
        text = FAKE_FFPROBE.format(
            python=sys.executable, stdout=stdout, stderr=stderr, exit_code=exit_code
        )
        return _write_script(tmp_path / "ffprobe", text)
    return make


@pytest.fixture
def make_runner(fake_ffmpeg, fake_ffprobe):
    """Factory building a Runner wired to fake ffmpeg/ffprobe scripts."""
    def make(ffmpeg=None, ffprobe=None, **kwargs):
        kwargs.setdefault("kill_grace", 2.0)
        return Runner(
            binary=ffmpeg or fake_ffmpeg(),
            binary_probe=ffprobe or fake_ffprobe(),
            **kwargs,
        )
    return make


@pytest.fixture(autouse=False)  # Request explicitly in tests that must not leak threads
def thread_leak_guard():
    """
    Fail the test if it leaves threads behind.

    Runner.run() and ProgressListener.stop() join everything they start
    (task threads, listener accept and handler threads), so any new thread
    alive after the test body is a shutdown bug.
    """
    before = set(t.ident for t in threading.enumerate())
    yield
    after = set(t.ident for t in threading.enumerate())
    leaked = after - before
    if leaked:
        leaked_threads = [t for t in threading.enumerate() if t.ident in leaked]
        thread_info = '\n'.join(f"  - {t.name} (daemon={t.daemon})" for t in leaked_threads)
        assert False, f"Thread leak detected, shutdown incomplete.\nLeaked threads:\n{thread_info}"
