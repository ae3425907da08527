"""CLI host for storyreel - multi-scene video stories with Veo."""

import asyncio
import logging
from enum import Enum
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .constraints import add_reference_image, can_extend, can_submit, normalize
from .credentials import EnvCredentialProvider
from .errors import MediaProcessingError, SubmissionBlockedError
from .logging_setup import configure_logging
from .media import FFmpegDecoder, encode, extract_last_frame, ingest_frame_source
from .models import (
    AspectRatio,
    GenerationMode,
    GenerationSettings,
    ImageFile,
    RequestConfig,
    Resolution,
    Speaker,
    StoryScript,
    VeoModel,
    VideoFile,
)
from .orchestrator import StoryOrchestrator
from .service import GeminiService
from .state import AppStatus

# Setup Typer and Console
app = typer.Typer(help="storyreel CLI - Multi-scene video stories with Veo")
console = Console()


class ModeChoice(str, Enum):
    TEXT = "text"
    FRAMES = "frames"
    REFERENCES = "references"


class ModelChoice(str, Enum):
    FAST = "fast"
    QUALITY = "quality"


MODES = {
    ModeChoice.TEXT: GenerationMode.TEXT_TO_VIDEO,
    ModeChoice.FRAMES: GenerationMode.FRAMES_TO_VIDEO,
    ModeChoice.REFERENCES: GenerationMode.REFERENCES_TO_VIDEO,
}
MODELS = {ModelChoice.FAST: VeoModel.VEO_FAST, ModelChoice.QUALITY: VeoModel.VEO}


def _setup(verbose: bool) -> None:
    configure_logging(logging.DEBUG if verbose else logging.WARNING)


async def _get_orchestrator(
    api_key: str | None,
    output_dir: Path,
) -> StoryOrchestrator:
    """Build the orchestrator once a credential is available."""
    credentials = EnvCredentialProvider(api_key, console=console)
    key = credentials.api_key
    if not key:
        await credentials.open_credential_selector()
        console.print(
            "[bold red]Error:[/bold red] GEMINI_API_KEY not found in env or arguments.",
        )
        raise typer.Exit(code=1)
    service = GeminiService(key, GenerationSettings(output_dir=output_dir))
    orchestrator = StoryOrchestrator(service, service, credentials)
    await orchestrator.startup()
    return orchestrator


async def _load_image(path: Path) -> ImageFile:
    if not path.exists():
        console.print(f"[bold red]Error:[/bold red] File {path} not found.")
        raise typer.Exit(code=1)
    payload = await encode(path)
    if not isinstance(payload, ImageFile):
        msg = f"{path} is not an image."
        raise MediaProcessingError(msg)
    return payload


async def _load_frame(path: Path) -> ImageFile:
    if not path.exists():
        console.print(f"[bold red]Error:[/bold red] File {path} not found.")
        raise typer.Exit(code=1)
    return await ingest_frame_source(path, FFmpegDecoder())


async def _with_references(
    config: RequestConfig,
    references: list[Path],
    style: Path | None,
) -> RequestConfig:
    for path in references:
        config = add_reference_image(config, await _load_image(path))
    if style is not None:
        config = config.model_copy(update={"style_image": await _load_image(style)})
    return config


async def _generate_scene(
    orchestrator: StoryOrchestrator,
    config: RequestConfig,
    label: str,
) -> None:
    check = can_submit(config.mode, config)
    if not check.ok:
        console.print(f"[bold red]Cannot submit {label}:[/bold red] {check.reason}")
        raise typer.Exit(code=1)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task(f"Generating {label}...", total=None)
        state = await orchestrator.generate(config)
        progress.update(task, completed=100)

    if state.credential_selection_required:
        await orchestrator.credentials.open_credential_selector()
    if state.status != AppStatus.SUCCESS:
        console.print(f"[bold red]Error:[/bold red] {state.error or 'Generation did not start.'}")
        raise typer.Exit(code=1)

    segment = state.current_segment
    if segment is None:
        console.print(
            "[bold red]Error:[/bold red] Video generated, but data is missing. "
            "Please try again.",
        )
        raise typer.Exit(code=1)
    audio = f"\n[bold]Audio:[/bold] {segment.audio_url}" if segment.has_audio else ""
    console.print(
        Panel(
            f"[bold]Prompt:[/bold] {segment.prompt or '-'}\n"
            f"[bold]Video:[/bold] {segment.video_url}{audio}",
            title=f"{label} Ready",
            border_style="green",
        ),
    )


def _print_timeline(orchestrator: StoryOrchestrator) -> None:
    table = Table(title="Story Timeline")
    table.add_column("#", justify="right")
    table.add_column("Speaker")
    table.add_column("Prompt")
    table.add_column("Video")
    table.add_column("Audio")
    for index, segment in enumerate(orchestrator.state.timeline.segments, start=1):
        table.add_row(
            str(index),
            segment.speaker.value if segment.speaker != Speaker.NONE else "Scene",
            segment.prompt,
            segment.video_url,
            segment.audio_url or "-",
        )
    console.print(table)


@app.command()
def scene(
    prompt: str = typer.Argument("", help="Visual description of the scene"),
    mode: ModeChoice = typer.Option(ModeChoice.TEXT, help="Generation mode"),
    start_frame: Path | None = typer.Option(
        None,
        help="Start frame (an image, or a video whose last frame is used)",
    ),
    end_frame: Path | None = typer.Option(None, help="End frame image or video"),
    loop: bool = typer.Option(False, "--loop", help="Create a looping video"),
    reference: list[Path] = typer.Option(
        [],
        "--reference",
        help="Reference image (up to 3)",
    ),
    style: Path | None = typer.Option(None, help="Style reference image"),
    dialogue: str = typer.Option("", help="Line of dialogue to speak"),
    speaker: Speaker = typer.Option(
        Speaker.NONE,
        case_sensitive=False,
        help="Voice for the dialogue",
    ),
    model: ModelChoice = typer.Option(ModelChoice.FAST, help="Veo model"),
    aspect_ratio: AspectRatio = typer.Option(AspectRatio.LANDSCAPE, help="Aspect ratio"),
    resolution: Resolution = typer.Option(Resolution.P720, help="Output resolution"),
    output_dir: Path = typer.Option(Path("./output"), help="Directory to save media"),
    api_key: str | None = typer.Option(
        None,
        envvar="GEMINI_API_KEY",
        help="Google Gemini API Key",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Generate a single scene."""
    _setup(verbose)

    async def _run() -> None:
        orchestrator = await _get_orchestrator(api_key, output_dir)
        generation_mode = MODES[mode]
        config = normalize(
            generation_mode,
            RequestConfig(
                mode=generation_mode,
                model=MODELS[model],
                aspect_ratio=aspect_ratio,
                resolution=resolution,
                prompt=prompt,
                dialogue=dialogue,
                speaker=speaker,
            ),
        )
        if generation_mode == GenerationMode.FRAMES_TO_VIDEO:
            update = {"is_looping": loop}
            if start_frame is not None:
                update["start_frame"] = await _load_frame(start_frame)
            if end_frame is not None:
                update["end_frame"] = await _load_frame(end_frame)
            config = normalize(generation_mode, config.model_copy(update=update))
        elif generation_mode == GenerationMode.REFERENCES_TO_VIDEO:
            config = await _with_references(config, reference, style)

        await _generate_scene(orchestrator, config, "Scene")

    try:
        asyncio.run(_run())
    except typer.Exit:
        raise
    except (MediaProcessingError, SubmissionBlockedError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e
    except Exception as e:
        console.print(f"[bold red]Fatal Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e


@app.command()
def story(
    script_path: Path = typer.Argument(..., help="Path to the story script JSON"),
    output_dir: Path = typer.Option(Path("./output"), help="Directory to save media"),
    api_key: str | None = typer.Option(
        None,
        envvar="GEMINI_API_KEY",
        help="Google Gemini API Key",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Generate every scene of a story script, in order."""
    _setup(verbose)
    if not script_path.exists():
        console.print(f"[bold red]Error:[/bold red] File {script_path} not found.")
        raise typer.Exit(code=1)

    with script_path.open("r") as f:
        script = StoryScript.model_validate_json(f.read())
    if not script.scenes:
        console.print("[bold red]Error:[/bold red] The script has no scenes.")
        raise typer.Exit(code=1)

    timeline_path = output_dir / "timeline.json"

    async def _run(orchestrator: StoryOrchestrator) -> None:
        first = script.scenes[0]
        mode = (
            GenerationMode.REFERENCES_TO_VIDEO
            if script.reference_images
            else GenerationMode.TEXT_TO_VIDEO
        )
        config = normalize(
            mode,
            RequestConfig(
                mode=mode,
                model=script.model,
                aspect_ratio=script.aspect_ratio,
                resolution=script.resolution,
            ),
        )
        config = await _with_references(config, script.reference_images, script.style_image)
        config = config.model_copy(
            update={
                "prompt": first.prompt,
                "dialogue": first.dialogue,
                "speaker": first.speaker,
            },
        )
        console.rule(f"[bold blue]{script.title}")
        await _generate_scene(orchestrator, config, f"Scene 1/{len(script.scenes)}")

        for index, item in enumerate(script.scenes[1:], start=2):
            if item.continuation == "extend" and can_extend(orchestrator.state.last_config):
                state = orchestrator.extend()
            else:
                if item.continuation == "extend":
                    console.print(
                        f"[yellow]Warning: scene {index - 1} can't be extended "
                        f"(1080p/4k); starting a new scene instead.[/yellow]",
                    )
                state = orchestrator.add_next_scene()
            if state.status == AppStatus.ERROR or state.draft is None:
                console.print(f"[bold red]Error:[/bold red] {state.error}")
                raise typer.Exit(code=1)
            config = state.draft.model_copy(
                update={
                    "prompt": item.prompt,
                    "dialogue": item.dialogue,
                    "speaker": item.speaker,
                },
            )
            await _generate_scene(
                orchestrator,
                config,
                f"Scene {index}/{len(script.scenes)}",
            )

    async def _main() -> StoryOrchestrator:
        orchestrator = await _get_orchestrator(api_key, output_dir)
        try:
            await _run(orchestrator)
        finally:
            if len(orchestrator.state.timeline):
                output_dir.mkdir(parents=True, exist_ok=True)
                with timeline_path.open("w") as f:
                    f.write(orchestrator.state.timeline.model_dump_json(indent=2))
        return orchestrator

    try:
        orchestrator = asyncio.run(_main())
    except typer.Exit:
        raise
    except (MediaProcessingError, SubmissionBlockedError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e
    except Exception as e:
        console.print(f"[bold red]Fatal Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    _print_timeline(orchestrator)
    console.rule("[bold green]Story Complete")
    console.print(f"Timeline saved to: [underline]{timeline_path.absolute()}[/underline]")


@app.command()
def frame(
    video_path: Path = typer.Argument(..., help="Video to take the last frame from"),
    output: Path | None = typer.Option(
        None,
        help="Where to write the JPEG (defaults to <video>_last.jpg)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Extract the last frame of a video as a JPEG."""
    _setup(verbose)
    if not video_path.exists():
        console.print(f"[bold red]Error:[/bold red] File {video_path} not found.")
        raise typer.Exit(code=1)
    if output is None:
        output = video_path.with_name(f"{video_path.stem}_last.jpg")

    async def _extract() -> ImageFile:
        payload = await encode(video_path)
        if not isinstance(payload, VideoFile):
            msg = f"{video_path} is not a video."
            raise MediaProcessingError(msg)
        return await extract_last_frame(payload, FFmpegDecoder())

    try:
        image = asyncio.run(_extract())
    except MediaProcessingError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(image.data)
    console.print(f"Frame saved to: [underline]{output.absolute()}[/underline]")


if __name__ == "__main__":
    app()
