"""Verification and rank progression core for a Minecraft proxy whitelist."""
