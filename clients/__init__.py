"""Device, storage and replay collaborators of the tracker."""
