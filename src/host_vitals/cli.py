"""CLI commands for host-vitals."""

import click


def _load_config():
    from host_vitals.config import Config

    try:
        return Config.load()
    except ValueError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(package_name="host-vitals")
def main() -> None:
    """Sample CPU, network and disk activity on this host."""
    pass


@main.command()
def run() -> None:
    """Run the samplers until interrupted."""
    import asyncio

    from host_vitals.daemon import run_daemon

    asyncio.run(run_daemon(_load_config()))


@main.command()
@click.option("--interval", "-i", default=1.0, show_default=True, help="Seconds between readings")
def status(interval: float) -> None:
    """Take two readings and print current rates."""
    import asyncio

    from host_vitals.cpu import CPUSampler
    from host_vitals.disk import DiskSampler
    from host_vitals.formatting import (
        format_bytes,
        format_load_average,
        format_memory,
        format_percentage,
        format_speed,
        format_temperature,
        format_uptime,
        or_dash,
    )
    from host_vitals.network import NetworkSampler, read_lan_address

    config = _load_config()
    # Single-shot readings must not be throttled
    config.sampling.min_update_gap = 0.0
    samplers = (CPUSampler(config), NetworkSampler(config), DiskSampler(config))

    async def sample_twice() -> None:
        for sampler in samplers:
            await sampler.tick()
        await asyncio.sleep(interval)
        for sampler in samplers:
            await sampler.tick()

    asyncio.run(sample_twice())

    cpu = samplers[0].snapshot.get()
    net = samplers[1].snapshot.get()
    disk = samplers[2].snapshot.get()

    click.echo(
        f"CPU:     {format_percentage(cpu.usage.user, 1)} user, "
        f"{format_percentage(cpu.usage.system, 1)} system, "
        f"{format_percentage(cpu.usage.idle, 1)} idle"
    )
    click.echo(f"Load:    {' '.join(format_load_average(v) for v in cpu.load_average)}")
    click.echo(f"Uptime:  {format_uptime(cpu.uptime)}")
    click.echo(f"Temp:    {format_temperature(cpu.temperature)}")
    click.echo(
        f"Memory:  {format_memory(cpu.memory_used)} / {format_memory(cpu.memory_total)} "
        f"({format_percentage(cpu.memory_percent)})"
    )
    click.echo(f"Network: ↓{format_speed(net.download_speed)} ↑{format_speed(net.upload_speed)}")
    click.echo(f"LAN:     {or_dash(read_lan_address())}")
    click.echo(
        f"Disk:    read {format_speed(disk.read_speed)}, "
        f"write {format_speed(disk.write_speed)}"
    )
    for volume in disk.disks + disk.network_disks:
        click.echo(
            f"  {volume.name:20} {format_bytes(volume.used_space):>10} / "
            f"{format_bytes(volume.total_space):<10} "
            f"{format_percentage(volume.usage_percentage * 100)}"
        )


@main.command()
@click.argument("mount_point")
def eject(mount_point: str) -> None:
    """Eject the volume mounted at MOUNT_POINT."""
    import asyncio

    from host_vitals import logging as console
    from host_vitals.disk import DiskSampler

    sampler = DiskSampler(_load_config())
    result = asyncio.run(sampler.eject(mount_point))
    console.eject_result(mount_point, result.success, result.reason)
    if not result.success:
        raise click.ClickException(result.reason or f"Failed to eject {mount_point}")


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration."""
    from dataclasses import asdict

    from host_vitals.config import SECTIONS

    cfg = _load_config()

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    for name in SECTIONS:
        click.echo()
        click.echo(f"[{name}]")
        for key, value in asdict(getattr(cfg, name)).items():
            click.echo(f"  {key} = {value}")


@config.command("init")
def config_init() -> None:
    """Write the default config file if none exists."""
    from host_vitals import logging as console
    from host_vitals.config import Config

    cfg = Config()
    if cfg.config_path.exists():
        click.echo(f"Config already exists at {cfg.config_path}")
        return
    cfg.save()
    console.config_created(str(cfg.config_path))


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    from host_vitals.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")
