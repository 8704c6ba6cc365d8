"""Resource routers."""
