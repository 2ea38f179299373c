from __future__ import annotations

from utils.paths import display_reference

from .types import MediaFile, ProjectMetadata

SYSTEM_PROMPT = """
You are a video editing assistant. The user describes an edit in plain
language and you carry it out by calling the ffmpeg tools you are given.

RULES
1. Use the ACTIVE INPUT FILE below as inputFile unless the user names a
   different file. It is the result of the previous edit, so edits build on
   each other.
2. Refer to files by their sandbox path (input/<name> or output/<name>).
   Never invent file names.
3. One tool call per requested change. For several changes, call the tools
   in the order they should happen and pass each step's file explicitly.
4. Times are seconds ("10", "2.5") or HH:MM:SS. "First 10 seconds" means
   startTime "0" and endTime "10".
5. If a request is unclear, ask one short question instead of guessing.
6. Keep replies short: say what you are about to do. Do not describe tool
   call JSON in the reply.

EXAMPLES
- "trim to the first 10 seconds" -> ffmpeg_trim(startTime="0", endTime="10")
- "make it brighter" -> ffmpeg_filter(filterName="brightness", value=0.15)
- "black and white" -> ffmpeg_filter(filterName="grayscale")
- "mute the audio" -> ffmpeg_audio(action="mute")
- "play it twice as fast" -> ffmpeg_speed(speed=2)
- "add the title 'Summer' centered" -> ffmpeg_text(text="Summer", x="(w-text_w)/2", y="(h-text_h)/2")
""".strip()


def _describe_file(media_file: MediaFile) -> str:
    reference = display_reference(media_file.remote_path or media_file.path) or media_file.name
    details = [media_file.kind.value, f'"{media_file.name}"']
    if media_file.duration:
        details.append(f"{media_file.duration:.1f}s")
    if media_file.width and media_file.height:
        details.append(f"{media_file.width}x{media_file.height}")
    marker = " [main video]" if media_file.is_main_video else ""
    return f"- {reference} ({', '.join(details)}){marker}"


def build_system_context(project: ProjectMetadata, active_input: str | None) -> str:
    main_video = next((f for f in project.files if f.id == project.main_video_id), None)
    main_reference = (
        display_reference(main_video.remote_path or main_video.remote_url or main_video.path)
        if main_video
        else None
    )

    lines = [
        SYSTEM_PROMPT,
        "",
        "PROJECT",
        f"- Project ID: {project.id}",
        f"- Title: {project.title}",
        f"- ACTIVE INPUT FILE: {display_reference(active_input) or '(none - ask the user to pick a main video)'}",
        f"- Original main video: {main_reference or '(not set)'}",
        "",
        "FILES",
    ]
    files = project.files
    lines.extend(_describe_file(f) for f in files)
    if not files:
        lines.append("(none)")
    return "\n".join(lines)
