import os
import sys
import time

import pytest

from mediagrab.errors import ExecutionError, ExecutionTimeout
from mediagrab.executor import BoundedBuffer, execute
from mediagrab.models import InvocationDescriptor, MediaKind


def python_descriptor(code, timeout=10.0, **kwargs):
    return InvocationDescriptor(
        name="python child",
        program=sys.executable,
        args=("-c", code),
        media_kind=MediaKind.VIDEO,
        output_path="unused.mp4",
        timeout=timeout,
        **kwargs,
    )


def test_success_returns_output_tail():
    assert "hello" in execute(python_descriptor("print('hello')"))


def test_non_zero_exit_raises_with_stderr_tail():
    code = "import sys; sys.stderr.write('ERROR: Private video\\n'); sys.exit(2)"
    with pytest.raises(ExecutionError) as excinfo:
        execute(python_descriptor(code))

    assert not isinstance(excinfo.value, ExecutionTimeout)
    assert "code 2" in excinfo.value.message
    assert "Private video" in excinfo.value.output


def test_timeout_kills_the_child():
    started = time.monotonic()
    with pytest.raises(ExecutionTimeout) as excinfo:
        execute(python_descriptor("import time; time.sleep(30)", timeout=0.5))

    assert time.monotonic() - started < 10
    assert "timed out" in excinfo.value.message


def test_missing_program_is_an_execution_error():
    descriptor = InvocationDescriptor(
        name="missing",
        program="mediagrab-no-such-binary",
        args=("--version",),
        media_kind=MediaKind.AUDIO,
        output_path="unused.mp3",
    )
    with pytest.raises(ExecutionError) as excinfo:
        execute(descriptor)
    assert "could not be started" in excinfo.value.message


@pytest.mark.skipif(os.name != "posix", reason="exec format errors are posix behaviour")
def test_unrunnable_program_is_an_execution_error(tmp_path):
    program = tmp_path / "not-a-binary"
    program.write_bytes(b"\x00\x01garbage without a shebang\n")
    program.chmod(0o755)
    descriptor = InvocationDescriptor(
        name="garbage",
        program=str(program),
        args=(),
        media_kind=MediaKind.VIDEO,
        output_path="unused.mp4",
    )
    with pytest.raises(ExecutionError) as excinfo:
        execute(descriptor)
    assert "could not be started" in excinfo.value.message


def test_chatty_child_output_is_capped():
    code = "import sys\nfor _ in range(2000):\n    sys.stdout.write('x' * 99 + '\\n')"
    output = execute(python_descriptor(code), output_limit=4096)
    assert 0 < len(output) <= 4096


def test_env_overrides_reach_the_child():
    code = "import os; print(os.environ['MEDIAGRAB_TEST_VALUE'])"
    output = execute(python_descriptor(code, env=(("MEDIAGRAB_TEST_VALUE", "42"),)))
    assert output.strip() == "42"


def test_pre_delay_uses_injected_sleep():
    slept = []
    execute(python_descriptor("pass", pre_delay=0.25), sleep=slept.append)
    assert slept == [0.25]


def test_bounded_buffer_keeps_trailing_bytes():
    buf = BoundedBuffer(4096)
    for index in range(10):
        buf.write(bytes([65 + index]) * 1000)

    assert len(buf) == 4096
    assert buf.dropped == 10 * 1000 - 4096
    assert buf.text().endswith("J" * 1000)
    assert buf.text().startswith("F" * 96 + "G")


def test_bounded_buffer_truncates_oversized_chunk():
    buf = BoundedBuffer(10)
    buf.write(b"0123456789abcdef")
    assert buf.text() == "6789abcdef"
    assert buf.dropped == 6
