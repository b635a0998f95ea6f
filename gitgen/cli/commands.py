"""CLI Commands"""

import os
import sys
from typing import Optional

from gitgen.config import ConfigManager, ModelConfig, get_manager, mask_api_key
from gitgen.llm import LLMClient, OpenAIClient
from gitgen.output import bold, dim, info, print_success, print_error, BULLET


def _print_model(model: ModelConfig, active: bool = False) -> None:
    marker = f" {info('(active)')}" if active else ""
    print(f"  {bold(model.name)}{marker}")
    print(f"    model_id:          {info(model.model_id)}")
    print(f"    url:               {info(model.url)}")
    print(f"    api_key:           {info(model.masked_api_key)}")
    print(f"    requires_auth:     {info(str(model.requires_auth).lower())}")
    print(f"    token parameter:   {info(model.dialect.token_style.label)}")
    print(f"    temperature:       {info(str(model.dialect.temperature))}")
    print(f"    max_output_tokens: {info(str(model.max_output_tokens))}")
    if model.note:
        print(f"    note:              {dim(model.note)}")


def display_config(manager: Optional[ConfigManager] = None) -> int:
    """Display current configuration."""
    manager = manager or get_manager()
    config = manager.load()
    config_path = manager.get_config_path()

    print(f"\n{bold('Current Configuration')}\n")

    if config_path:
        print(f"  {dim('Loaded from:')} {config_path}")
    else:
        print(f"  {dim('Loaded from:')} defaults (no {manager.CONFIG_FILENAME} found)")

    overrides = manager.env_overrides()
    if overrides:
        print(f"  {dim('Environment overrides:')}")
        for name, value in overrides.items():
            shown = mask_api_key(value) if name.endswith("APIKEY") else value
            print(f"    {name}={shown}")

    print()
    print(f"  {bold('Settings:')}")
    print(f"    active_model:      {info(config.active_model or 'none')}")
    print(f"    max_retries:       {info(str(config.max_retries))}")
    print(f"    timeout:           {info(str(config.timeout))}s")

    print(f"\n  {bold('Models:')}")
    env_model = manager.env_model()
    if env_model:
        _print_model(env_model, active=True)
    for name, model in config.models.items():
        _print_model(model, active=env_model is None and name == config.active_model)
    if not env_model and not config.models:
        print(f"    {dim('none configured')}")

    print(f"\n  {dim('Config locations:')}")
    print(f"    Local:  {manager.CONFIG_FILENAME} (in current directory)")
    print(f"    Global: ~/{manager.CONFIG_FILENAME}")
    print(f"\n  {dim('Run')} gitgen --detect {dim('to refresh detected parameters')}\n")

    return 0


async def run_detect(client: LLMClient) -> int:
    """Probe the endpoint and save the parameters it accepts."""
    if not isinstance(client, OpenAIClient):
        print_error("--detect only works with OpenAI-compatible models")
        return 1

    print(f"Detecting parameters for {bold(client.name)}... ", end='', flush=True, file=sys.stderr)
    dialect = await client.detect_parameters()
    print(file=sys.stderr)
    print_success(f"Detected parameters for {client.config.model_id}")
    print(f"  {BULLET} token parameter: {info(dialect.token_style.label)}")
    print(f"  {BULLET} temperature:     {info(str(dialect.temperature))}")
    return 0


def run_install_completion() -> int:
    """Install shell tab completion."""
    shell = os.environ.get('SHELL', '')

    print(f"\n{bold('Tab Completion Setup')}\n")

    line = 'eval "$(register-python-argcomplete gitgen)"'
    powershell = "register-python-argcomplete --shell powershell gitgen | Out-String | Invoke-Expression"
    if 'zsh' in shell or 'bash' in shell:
        rc_name = '~/.zshrc' if 'zsh' in shell else '~/.bashrc'
        print(f"Add this line to {dim(os.path.expanduser(rc_name))}:\n")
        print(f"  {line}\n")
        print(f"Then run: {dim('source ' + rc_name)}")
    elif sys.platform == 'win32':
        print("For PowerShell, run:\n")
        print(f"  {powershell}\n")
        print("To make it permanent, add to your $PROFILE:\n")
        print(f"  {powershell}")
    else:
        print("Run one of these based on your shell:\n")
        print(f"  {dim('# Bash/Zsh')}")
        print(f"  {line}\n")
        print(f"  {dim('# PowerShell')}")
        print(f"  {powershell}\n")
        print(f"  {dim('# Fish')}")
        print("  register-python-argcomplete --shell fish gitgen | source")

    print(f"\n{dim('After setup, press TAB to autocomplete flags.')}")
    return 0
