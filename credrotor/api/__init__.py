"""HTTP trigger surface for credrotor."""
