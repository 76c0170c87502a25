import subprocess
import textwrap
from pathlib import Path

import pytest

GEMFILE = """\
source "https://rubygems.org"

gem "rails", "~> 7.1"
gem "pg"

group :development, :test do
  gem "rspec-rails"
end

group :development do
  gem "web-console"
end
"""

GEMFILE_LOCK = """\
GEM
  remote: https://rubygems.org/
  specs:
    rails (7.1.3)
    rspec-rails (6.1.1)
"""

APPLICATION_RB = """\
require_relative "boot"
require "rails/all"

module Storefront
  class Application < Rails::Application
    config.load_defaults 7.1
  end
end
"""


def write(root: Path, rel: str, content: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(content), encoding="utf-8")
    return path


@pytest.fixture
def rails_app(tmp_path: Path) -> Path:
    """A minimal RSpec-based Rails application."""
    root = tmp_path / "storefront"
    write(root, "Gemfile", GEMFILE)
    write(root, "Gemfile.lock", GEMFILE_LOCK)
    write(root, "config/application.rb", APPLICATION_RB)
    write(root, "spec/spec_helper.rb", 'RSpec.configure do |config|\nend\n')
    write(root, "app/models/user.rb", "class User < ApplicationRecord\nend\n")
    write(root, "app/models/order.rb", "class Order < ApplicationRecord\nend\n")
    write(root, "spec/models/user_spec.rb", 'RSpec.describe User do\nend\n')
    return root


def completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess([], returncode, stdout=stdout, stderr=stderr)
