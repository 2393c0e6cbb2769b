"""Host telemetry sampler: CPU, network and disk rates with per-process attribution."""
