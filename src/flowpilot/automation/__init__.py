"""Automation core: flow graphs, validation, execution and the services around them."""
