"""Host-side launching of published images.

Modules
-------
units
    ``UnitManager`` — start/stop systemd user units (audio interfaces).
images
    ``list_images`` / ``resolve_image`` over the images directory.
containers
    ``ContainerLauncher`` — detached ``apptainer run`` instances with pid files.
setups
    ``SetupRunner`` — an interface plus an ordered list of shapes.
"""
