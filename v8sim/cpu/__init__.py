"""Register file, flags and ALU of the v8 CPU."""
