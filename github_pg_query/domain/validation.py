"""Structural validation applied to repositories before they are stored."""
from github_pg_query.domain.errors import ValidationError
from github_pg_query.domain.models import Repository, RepositoryLicense, RepositoryOwner


GITHUB_URL_PREFIX = "https://github.com/"
GITHUB_SSH_PREFIX = "git@github.com:"
VISIBILITIES = ("public", "private", "internal")
OWNER_TYPES = ("User", "Organization", "Bot")


class RepositoryValidator:
    """Checks required fields, URL shapes and counter signs.

    ``validate`` raises ``ValidationError`` naming the first failing field.
    """

    def validate(self, repo: Repository) -> None:
        for field_name in ("full_name", "name", "html_url", "clone_url",
                           "ssh_url", "default_branch", "visibility"):
            if not getattr(repo, field_name):
                raise ValidationError(field_name, "cannot be empty")

        if not repo.html_url.startswith(GITHUB_URL_PREFIX):
            raise ValidationError("html_url", "must be a valid GitHub URL")
        if not (repo.clone_url.startswith(GITHUB_URL_PREFIX)
                and repo.clone_url.endswith(".git")):
            raise ValidationError("clone_url", "must be a valid GitHub clone URL")
        if not (repo.ssh_url.startswith(GITHUB_SSH_PREFIX)
                and repo.ssh_url.endswith(".git")):
            raise ValidationError("ssh_url", "must be a valid GitHub SSH URL")

        if repo.visibility not in VISIBILITIES:
            raise ValidationError(
                "visibility", "must be 'public', 'private', or 'internal'"
            )

        for field_name in ("size", "stargazers_count", "watchers_count",
                           "forks_count", "open_issues_count"):
            if getattr(repo, field_name) < 0:
                raise ValidationError(field_name, "cannot be negative")

        self.validate_owner(repo.owner)
        if repo.license is not None:
            self.validate_license(repo.license)

    def validate_owner(self, owner: RepositoryOwner) -> None:
        if not owner.login:
            raise ValidationError("owner.login", "cannot be empty")
        if not owner.avatar_url:
            raise ValidationError("owner.avatar_url", "cannot be empty")
        if not owner.html_url:
            raise ValidationError("owner.html_url", "cannot be empty")
        if owner.owner_type not in OWNER_TYPES:
            raise ValidationError(
                "owner.type", "must be 'User', 'Organization', or 'Bot'"
            )
        if not owner.html_url.startswith(GITHUB_URL_PREFIX):
            raise ValidationError("owner.html_url", "must be a valid GitHub URL")

    def validate_license(self, license: RepositoryLicense) -> None:
        if not license.key:
            raise ValidationError("license.key", "cannot be empty")
        if not license.name:
            raise ValidationError("license.name", "cannot be empty")
