# HTTP surface for the link registry
