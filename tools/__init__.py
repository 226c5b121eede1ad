# Operational tooling for the link registry
