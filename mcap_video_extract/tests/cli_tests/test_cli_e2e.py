import json
from typing import Any, Dict, List, Optional, Tuple

import pytest
from typer.testing import CliRunner

from mcap_video_extract import extractor
from mcap_video_extract.cli import app as cli_app

from conftest import MemoryPipeline


@pytest.fixture(scope="function")
def cli_runner():
    """Fixture for invoking CLI commands."""
    return CliRunner()


@pytest.fixture
def memory_pipelines(monkeypatch):
    """Route the CLI's extraction through in-memory pipelines."""
    created: Dict[str, MemoryPipeline] = {}

    def make_backend(topology, output_path, config, cancel_event=None):
        pipeline = MemoryPipeline(topology, output_path, cancel_event=cancel_event)
        created[output_path.name] = pipeline
        return pipeline

    monkeypatch.setattr(extractor, "make_backend", make_backend)
    return created


def run_cli_command(runner: CliRunner, command: List[str], env: Optional[Dict[str, str]] = None):
    """Run a CLI command with the extractor's environment variables cleared."""
    default_env = {
        "MCAP_VIDEO_QUEUE_SIZE": None,
        "MCAP_VIDEO_TIMEOUT": None,
        "MCAP_VIDEO_WORKERS": None,
        "MCAP_VIDEO_LOG_LEVEL": "WARNING",
    }
    if env:
        default_env.update(env)
    result = runner.invoke(cli_app, command, env=default_env)
    print(f"CLI Command: {' '.join(command)}")
    print(f"CLI Exit Code: {result.exit_code}")
    print(f"CLI Output:\n{result.output}")
    return result


def extract_json_from_output(output: str) -> Tuple[Optional[Any], Optional[str]]:
    """
    Parse the JSON document in a CLI output that may have log lines before it.

    Returns a tuple: (parsed_json_data, error_message_if_any).
    """
    lines = output.splitlines()
    for i, line in enumerate(lines):
        stripped_line = line.strip()
        if stripped_line.startswith("{") or stripped_line.startswith("["):
            candidate = "\n".join(lines[i:])
            try:
                return json.loads(candidate), None
            except json.JSONDecodeError as e:
                return None, f"JSONDecodeError: {e}. Candidate: '{candidate[:300]}...'"
    return None, "No JSON start ('{' or '[') found in output."


def test_list_table(cli_runner, recording_builder):
    recording_builder.video_channel("/camera/front", [1_000_000_000, 2_000_000_000, 3_500_000_000])
    path = recording_builder.write()

    result = run_cli_command(cli_runner, [str(path)])

    assert result.exit_code == 0
    assert "/camera/front" in result.output
    assert "H.264" in result.output
    assert "2.50s" in result.output


def test_list_json(cli_runner, recording_builder):
    recording_builder.video_channel("/camera/front", [1000, 2000, 3000, 4000, 6000])
    imu = recording_builder.channel("/imu", schema_name="sensor_msgs/Imu")
    recording_builder.add(imu, 1000, b"\x00")
    path = recording_builder.write()

    result = run_cli_command(cli_runner, [str(path), "--json"])

    assert result.exit_code == 0
    data, error = extract_json_from_output(result.output)
    assert error is None, error
    assert [c["channel_name"] for c in data["channels"]] == ["/camera/front"]
    channel = data["channels"][0]
    assert channel["frame_count"] == 5
    assert channel["duration"] == 5000
    assert channel["codec"] == "h264"


def test_list_without_video_channels(cli_runner, recording_builder):
    imu = recording_builder.channel("/imu", schema_name="sensor_msgs/Imu")
    recording_builder.add(imu, 1000, b"\x00")
    path = recording_builder.write()

    result = run_cli_command(cli_runner, [str(path)])

    assert result.exit_code == 0
    assert "No foxglove.CompressedVideo messages found" in result.output


def test_missing_recording_exits_with_error(cli_runner, tmp_path):
    result = run_cli_command(cli_runner, [str(tmp_path / "missing.mcap")])
    assert result.exit_code == 1
    assert "Error" in result.output


def test_extract_channel(cli_runner, recording_builder, tmp_path, memory_pipelines):
    recording_builder.video_channel("video/Cam0/stream", [100, 50, 300])
    path = recording_builder.write()
    output_dir = tmp_path / "videos"

    result = run_cli_command(cli_runner, [str(path), "video/Cam0/stream", "-o", str(output_dir), "--json"])

    assert result.exit_code == 0
    data, error = extract_json_from_output(result.output)
    assert error is None, error
    report = data["results"][0]
    assert report["status"] == "Completed"
    assert report["frames_written"] == 2
    assert report["frames_dropped"] == 1
    assert memory_pipelines["video_Cam0_stream.mp4"].pts == [0, 200]
    assert (output_dir / "video_Cam0_stream.mp4").exists()


def test_extract_all_reports_failures(cli_runner, recording_builder, tmp_path, memory_pipelines):
    recording_builder.video_channel("/cam/good", [1, 2])
    recording_builder.video_channel("/cam/odd", [1, 2], format="mjpeg")
    path = recording_builder.write()

    result = run_cli_command(cli_runner, [str(path), "all", "--output", str(tmp_path / "out")])

    assert result.exit_code == 1
    assert "Completed" in result.output
    assert "Failed" in result.output
    assert "UnsupportedCodecError" in result.output


def test_extract_missing_channel(cli_runner, recording_builder, tmp_path, memory_pipelines):
    recording_builder.video_channel("/cam/front", [1])
    path = recording_builder.write()
    output_dir = tmp_path / "out"

    result = run_cli_command(cli_runner, [str(path), "/cam/rear", "-o", str(output_dir), "--json"])

    assert result.exit_code == 1
    data, error = extract_json_from_output(result.output)
    assert error is None, error
    assert data["results"] == [{
        "channel_name": "/cam/rear",
        "status": "Failed",
        "error_type": "ChannelNotFound",
        "error": "channel '/cam/rear' not found: no such channel",
        "output_path": None,
        "frames_written": 0,
        "frames_dropped": 0,
    }]
    assert not output_dir.exists()
    assert memory_pipelines == {}


def test_invalid_environment_exits_with_error(cli_runner, recording_builder):
    path = recording_builder.write()
    result = run_cli_command(cli_runner, [str(path)], env={"MCAP_VIDEO_WORKERS": "lots"})
    assert result.exit_code == 1
    assert "MCAP_VIDEO_WORKERS" in result.output
