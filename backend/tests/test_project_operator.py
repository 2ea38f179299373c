import pytest

from agent.video_agent.types import MediaFile, MessageRole, ToolInvocationRecord
from models.media_models import MediaInfo, MediaKind
from operators.project_operator import (
    MediaFileInUseError,
    MediaFileNotFoundError,
    ProjectNotFoundError,
    active_input_reference,
    add_file,
    append_message,
    best_reference,
    create_project,
    delete_project,
    get_project,
    import_media,
    list_projects,
    load_project,
    remove_file,
    set_current_output,
    set_main_video,
    set_title,
    update_file_media_info,
)
from utils.backend_client import UploadResult
from utils.ffmpeg_exec import ExecResult
from utils.sandbox import input_dir, project_dir


class _FakeRunner:
    def __init__(self, info=None):
        self.info = info
        self.calls = []

    def run(self, args):
        self.calls.append(args)
        return ExecResult(success=True)

    def probe(self, path):
        return self.info


class _FakeBackend:
    def __init__(self):
        self.projects = []
        self.uploads = []

    def ensure_project(self, project_id, title=None):
        self.projects.append((project_id, title))

    def upload_file(self, project_id, file_path, filename, kind):
        self.uploads.append((project_id, str(file_path), filename, kind))
        return UploadResult(
            remote_path=f"input/{filename}",
            remote_url=f"https://b.example/projects/{project_id}/input/{filename}",
        )


def _video(file_id="file_1", **overrides) -> MediaFile:
    values = {"id": file_id, "name": "beach.mp4", "kind": MediaKind.VIDEO, "path": f"/sandbox/input/{file_id}.mp4"}
    values.update(overrides)
    return MediaFile(**values)


@pytest.fixture
def root(tmp_path):
    return tmp_path / "projects"


@pytest.fixture
def project(db, root):
    return create_project(db, "Untitled project", sandbox_root=root)


def test_create_project_builds_sandbox(db, root, project):
    assert project.id.startswith("proj_")
    assert (project_dir(project.id, root) / "input").is_dir()
    assert (project_dir(project.id, root) / "output").is_dir()
    assert load_project(db, project.id) == project


def test_create_project_registers_with_backend(db, root):
    backend = _FakeBackend()

    created = create_project(db, "Remote", backend=backend, sandbox_root=root)

    assert backend.projects == [(created.id, "Remote")]


def test_get_project_missing_raises(db):
    with pytest.raises(ProjectNotFoundError):
        get_project(db, "proj_missing")


def test_load_project_missing_returns_none(db):
    assert load_project(db, "proj_missing") is None


def test_list_projects_most_recent_first(db, root):
    first = create_project(db, "First", sandbox_root=root)
    create_project(db, "Second", sandbox_root=root)
    set_title(db, first.id, "First again")

    titles = [p.title for p in list_projects(db)]

    assert titles == ["First again", "Second"]


def test_mutators_bump_updated_at(db, project):
    updated = set_title(db, project.id, "Beach day")

    assert updated.title == "Beach day"
    assert updated.updated_at >= project.updated_at
    assert get_project(db, project.id).title == "Beach day"


def test_set_main_video_seeds_current_output(db, project):
    add_file(db, project.id, _video(remote_path="input/beach.mp4", remote_url="https://b.example/input/beach.mp4"))

    updated = set_main_video(db, project.id, "file_1")

    assert updated.main_video_id == "file_1"
    assert updated.current_output == "input/beach.mp4"
    assert updated.current_playback_url == "https://b.example/input/beach.mp4"
    assert updated.files[0].is_main_video


def test_set_main_video_unknown_file(db, project):
    with pytest.raises(MediaFileNotFoundError):
        set_main_video(db, project.id, "file_nope")


def test_best_reference_preference():
    assert best_reference(_video(remote_path="input/a.mp4", remote_url="https://x/a.mp4")) == "input/a.mp4"
    assert best_reference(_video(remote_url="https://x/a.mp4")) == "https://x/a.mp4"
    assert best_reference(_video()) == "/sandbox/input/file_1.mp4"


def test_active_input_prefers_current_output(db, project):
    add_file(db, project.id, _video())
    seeded = set_main_video(db, project.id, "file_1")
    assert active_input_reference(seeded) == "/sandbox/input/file_1.mp4"

    edited = set_current_output(db, project.id, "/sandbox/output/trimmed_1.mp4")

    assert active_input_reference(edited) == "/sandbox/output/trimmed_1.mp4"


def test_active_input_without_video_is_none(project):
    assert active_input_reference(project) is None


def test_set_current_output_rejects_empty(db, project):
    with pytest.raises(ValueError):
        set_current_output(db, project.id, "")


def test_set_current_output_keeps_playback_when_not_given(db, project):
    set_current_output(db, project.id, "output/a.mp4", playback_url="https://b.example/a.mp4?v=1")

    updated = set_current_output(db, project.id, "output/b.mp4")

    assert updated.current_output == "output/b.mp4"
    assert updated.current_playback_url == "https://b.example/a.mp4?v=1"


def test_append_message_keeps_order(db, project):
    record = ToolInvocationRecord(tool_name="ffmpeg_trim", arguments={"startTime": "0"}, success=True)
    first = append_message(db, project.id, MessageRole.USER, "trim it")
    append_message(db, project.id, MessageRole.ASSISTANT, "done", tool_invocations=[record])

    history = get_project(db, project.id).chat_history
    assert [m.role for m in history] == [MessageRole.USER, MessageRole.ASSISTANT]
    assert history[1].tool_invocations[0].tool_name == "ffmpeg_trim"
    assert history[0].id == first.id


def test_remove_file_clears_main_video(db, project, tmp_path):
    media = tmp_path / "clip.mp4"
    media.write_bytes(b"v")
    add_file(db, project.id, _video(path=str(media)))
    set_main_video(db, project.id, "file_1")
    set_current_output(db, project.id, "/sandbox/output/trimmed_1.mp4")

    updated = remove_file(db, project.id, "file_1")

    assert updated.files == []
    assert updated.main_video_id is None
    assert updated.current_output == "/sandbox/output/trimmed_1.mp4"
    assert not media.exists()


def test_remove_file_refuses_current_output(db, project, tmp_path):
    media = tmp_path / "clip.mp4"
    media.write_bytes(b"v")
    add_file(db, project.id, _video(path=str(media)))
    set_main_video(db, project.id, "file_1")

    with pytest.raises(MediaFileInUseError):
        remove_file(db, project.id, "file_1")

    saved = get_project(db, project.id)
    assert [f.id for f in saved.files] == ["file_1"]
    assert saved.current_output == str(media)
    assert media.exists()


def test_remove_file_refuses_remote_current_output(db, project):
    add_file(db, project.id, _video(remote_path="input/beach.mp4"))
    set_main_video(db, project.id, "file_1")

    with pytest.raises(MediaFileInUseError):
        remove_file(db, project.id, "file_1")


def test_update_file_media_info(db, project):
    add_file(db, project.id, _video())

    updated = update_file_media_info(
        db, project.id, "file_1", MediaInfo(duration=12.5, width=1920, height=1080)
    )

    assert updated.files[0].duration == 12.5
    assert updated.files[0].width == 1920


def test_delete_project_removes_row_and_sandbox(db, root, project):
    assert delete_project(db, project.id, root)

    assert load_project(db, project.id) is None
    assert not project_dir(project.id, root).exists()
    assert not delete_project(db, project.id, root)


def test_import_media_stores_probes_and_registers(db, root, project):
    runner = _FakeRunner(info=MediaInfo(duration=30, width=1280, height=720))

    media_file = import_media(db, project.id, b"video-bytes", "beach.mp4", MediaKind.VIDEO, runner=runner, sandbox_root=root)

    assert media_file.path == str(input_dir(project.id, root) / f"{media_file.id}.mp4")
    assert media_file.size == len(b"video-bytes")
    assert media_file.duration == 30
    assert media_file.thumbnail_path.endswith(f"{media_file.id}.jpg")
    assert get_project(db, project.id).files[0].id == media_file.id


def test_import_media_uploads_when_remote(db, root, project):
    backend = _FakeBackend()

    media_file = import_media(db, project.id, b"a", "song.mp3", MediaKind.AUDIO, backend=backend, sandbox_root=root)

    assert backend.uploads[0][2:] == ("song.mp3", "audio")
    assert media_file.remote_path == "input/song.mp3"
    assert media_file.thumbnail_path is None
