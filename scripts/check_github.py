import requests
import os
import argparse

proxy_base_url = os.getenv('PROXY_BASE_URL', 'http://localhost:8000').rstrip('/')


def fetch(target):
    url = f'{proxy_base_url}/{target}'
    response = requests.get(url, allow_redirects=True, stream=True)

    print(f'GET {url}')
    print(f'  status: {response.status_code}')
    print(f'  final url: {response.url}')
    print(f'  content-type: {response.headers.get("content-type")}')
    print(f'  access-control-allow-origin: {response.headers.get("access-control-allow-origin")}')

    if response.status_code != 200:
        print(f"Error with status code: {response.status_code}, "
              f"Message: {response.text[:200]}")
        return False

    size = sum(len(chunk) for chunk in response.iter_content(chunk_size=64 * 1024))
    print(f'  bytes: {size}')
    print()
    return True


def check(owner, repo, ref, path, tag):
    targets = [
        f'https://raw.githubusercontent.com/{owner}/{repo}/{ref}/{path}',
        f'https://github.com/{owner}/{repo}/archive/refs/heads/{ref}.zip',
    ]
    if tag:
        targets.append(f'https://github.com/{owner}/{repo}/archive/refs/tags/{tag}.tar.gz')

    results = [fetch(target) for target in targets]
    if not all(results):
        raise SystemExit(1)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description='Fetch a raw file and source archives '
                                     'through a running ghrelay instance.')
    parser.add_argument('owner', type=str, help='The owner of the repository.')
    parser.add_argument('repo', type=str, help='The repository name.')
    parser.add_argument('--ref', type=str, default='main', help='Branch to fetch from.')
    parser.add_argument('--path', type=str, default='README.md', help='File path inside the repository.')
    parser.add_argument('--tag', type=str, default=None, help='Optional release tag to download.')
    args = parser.parse_args()

    check(args.owner, args.repo, args.ref, args.path, args.tag)
