"""Hetzner Cloud infrastructure modules."""

from src.hetzner import firewall, floating_ip, load_balancer, server

__all__ = ["firewall", "floating_ip", "load_balancer", "server"]
