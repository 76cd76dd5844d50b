"""Resource catalog, planning and plan execution."""
