"""Command-line interface for mistral-client."""

import json
import sys
from typing import Optional, Any, Tuple

import click

from . import __version__
from .client import MistralClient, create_client
from .logging_config import configure_logging
from .models import Message


@click.group()
@click.version_option(version=__version__, prog_name="mistral-client")
@click.option("--api-key", "-k", envvar="MISTRAL_API_KEY",
              help="API key (or set MISTRAL_API_KEY)")
@click.option("--endpoint", "-e", envvar="MISTRAL_ENDPOINT", help="API base URL")
@click.option("--max-retries", type=click.IntRange(min=0), help="Retries after the first attempt")
@click.option("--retry-delay", type=click.FloatRange(min=0), help="Initial backoff delay in seconds")
@click.option("--verbose", "-v", is_flag=True, help="Log requests and retries to stderr")
@click.pass_context
def cli(ctx: click.Context, api_key: Optional[str], endpoint: Optional[str],
        max_retries: Optional[int], retry_delay: Optional[float], verbose: bool) -> None:
    """Client for the Mistral API with retries and streaming."""
    ctx.ensure_object(dict)
    ctx.obj["api_key"] = api_key
    ctx.obj["endpoint"] = endpoint
    ctx.obj["max_retries"] = max_retries
    ctx.obj["retry_delay"] = retry_delay
    ctx.obj["verbose"] = verbose
    configure_logging("DEBUG" if verbose else "WARNING")


def get_client(ctx: click.Context) -> MistralClient:
    """Create client from context."""
    return create_client(
        api_key=ctx.obj["api_key"],
        endpoint=ctx.obj["endpoint"],
        max_retries=ctx.obj["max_retries"],
        retry_delay=ctx.obj["retry_delay"],
    )


def fail(ctx: click.Context, error: Exception) -> None:
    """Report an error and exit."""
    if ctx.obj["verbose"]:
        import traceback
        click.echo(traceback.format_exc(), err=True)
    click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def _api_error(response: Any) -> Optional[str]:
    """Return the error message from an API error body, if it is one."""
    if isinstance(response, dict) and "choices" not in response and "data" not in response:
        return str(response.get("message") or response.get("detail") or response)
    return None


@cli.command()
@click.option("--json-output", "-j", is_flag=True, help="Output as JSON")
@click.pass_context
def models(ctx: click.Context, json_output: bool) -> None:
    """List available models.

    Example:
        mistral-client models
    """
    try:
        with get_client(ctx) as client:
            response = client.list_models()

        error = _api_error(response)
        if error:
            raise click.ClickException(error)

        if json_output:
            click.echo(json.dumps(response, indent=2))
        else:
            for model in response.get("data", []):
                click.echo(model.get("id", ""))

    except Exception as e:
        fail(ctx, e)


@cli.command()
@click.argument("message")
@click.option("--model", "-m", default="mistral-tiny", show_default=True, help="Model to use")
@click.option("--system", "-s", help="System prompt")
@click.option("--max-tokens", "-t", type=int, help="Maximum tokens in response")
@click.option("--temperature", type=float, help="Sampling temperature")
@click.option("--stream", is_flag=True, help="Print the answer as it is generated")
@click.option("--json-output", "-j", is_flag=True, help="Output the raw response as JSON")
@click.pass_context
def chat(ctx: click.Context, message: str, model: str, system: Optional[str],
         max_tokens: Optional[int], temperature: Optional[float], stream: bool,
         json_output: bool) -> None:
    """Send a single message and print the answer.

    Example:
        mistral-client chat "What is the best French cheese?"
        mistral-client chat "Hello" --system "You are helpful." --stream
    """
    messages = []
    if system:
        messages.append(Message.system(system))
    messages.append(Message.user(message))

    try:
        with get_client(ctx) as client:
            if stream:
                with client.chat_stream(model, messages, temperature=temperature,
                                        max_tokens=max_tokens) as events:
                    for event in events:
                        if json_output:
                            click.echo(json.dumps(event))
                            continue
                        choices = event.get("choices") or [{}]
                        content = choices[0].get("delta", {}).get("content")
                        if content:
                            click.echo(content, nl=False)
                if not json_output:
                    click.echo()
                return

            response = client.chat(model, messages, temperature=temperature,
                                   max_tokens=max_tokens)

        error = _api_error(response)
        if error:
            raise click.ClickException(error)

        if json_output:
            click.echo(json.dumps(response, indent=2))
        else:
            click.echo(response["choices"][0]["message"]["content"])

    except Exception as e:
        fail(ctx, e)


@cli.command()
@click.argument("texts", nargs=-1, required=True)
@click.option("--model", "-m", default="mistral-embed", show_default=True, help="Embedding model")
@click.pass_context
def embed(ctx: click.Context, texts: Tuple[str, ...], model: str) -> None:
    """Print embeddings for one or more texts as JSON.

    Example:
        mistral-client embed "What is the best French cheese?"
    """
    try:
        with get_client(ctx) as client:
            response = client.embeddings(model, list(texts))

        error = _api_error(response)
        if error:
            raise click.ClickException(error)

        vectors = [item["embedding"] for item in response["data"]]
        click.echo(json.dumps(vectors))

    except Exception as e:
        fail(ctx, e)


def main() -> None:
    """Entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
