"""CDK stacks and constructs for the GitOps platform and Backstage."""
