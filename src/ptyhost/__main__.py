from ptyhost.cli import main

main()
